from .auth import User, SessionToken, ROLES
from .inventory import Product, Stock, StockMovement, MOVEMENT_TYPES
from .sales import Order, OrderItem, Transaction, OrderSequence, PAYMENT_METHODS
from .cash import CashClosing

__all__ = [
    'User', 'SessionToken', 'ROLES',
    'Product', 'Stock', 'StockMovement', 'MOVEMENT_TYPES',
    'Order', 'OrderItem', 'Transaction', 'OrderSequence', 'PAYMENT_METHODS',
    'CashClosing',
]
