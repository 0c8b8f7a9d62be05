"""Proposals domain: entity, status transitions, contract signing"""
