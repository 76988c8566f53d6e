"""
Site marketplace backend.

Sells and rents pre-built sites, tracks orders, and reconciles card/Pix
payments with the payment gateway.
"""

__version__ = "1.0.0"
