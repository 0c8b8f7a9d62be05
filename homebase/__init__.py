"""HomeBase backend - proposals, contracts and e-signatures for home maintenance"""

__version__ = "1.0.0"
