"""
Checkout & Settlement Module
"""
from .cart import add_to_cart, list_cart, list_purchases, remove_from_cart, update_cart_quantity
from .intents import AddressAssignment, Destination, GuestLine, create_intent, update_intent
from .finalization import finalize
from .cancellation import cancel
from .fulfillment import apply_fulfillment

__all__ = [
    "add_to_cart",
    "list_cart",
    "list_purchases",
    "remove_from_cart",
    "update_cart_quantity",
    "AddressAssignment",
    "Destination",
    "GuestLine",
    "create_intent",
    "update_intent",
    "finalize",
    "cancel",
    "apply_fulfillment",
]
