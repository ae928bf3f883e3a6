"""Storefront order lifecycle core.

Cart ledger, checkout compilation, payment-proof intake and the
administrative review of bank-transfer orders.
"""

__version__ = "0.1.0"
