"""
tokenvest Core Module

Building blocks shared by the ledger, claim engine and treasury:
- Address derivation
- Account storage
- Configuration, logging and metrics
- Exception hierarchy
"""

__all__ = []
