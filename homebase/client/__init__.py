"""Async client for the HomeBase API and the proposal workflow built on it"""
