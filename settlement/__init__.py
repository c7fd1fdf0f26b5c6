"""
Order Settlement Service

Turns shopping carts into paid, fulfilled or cancelled orders while keeping the
order store, the payment gateway and the external ERP consistent.
"""

__version__ = "1.0.0"
