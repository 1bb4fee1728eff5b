"""
Basero: rebasing shares ledger, interest vault and cross-ledger transfer gateway.
"""

__version__ = "0.1.0"
