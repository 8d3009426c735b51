"""
Order lifecycle engine for the storefront: checkout, payment confirmation,
fulfillment, cancellation, returns and refund reconciliation.
"""

__version__ = "0.1.0"
