from .machines import VendingMachine, Product, Slot
from .sales import Sale

__all__ = [
    'VendingMachine', 'Product', 'Slot',
    'Sale',
]
