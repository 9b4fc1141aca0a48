from .auth import User
from .catalog import Product, Inventory
from .stores import Store, StockPosition, StockAdjustment, Visit, AdjustmentReason
from .orders import Order, OrderItem, UnfulfilledItem, OrderStatus

__all__ = [
    'User',
    'Product', 'Inventory',
    'Store', 'StockPosition', 'StockAdjustment', 'Visit', 'AdjustmentReason',
    'Order', 'OrderItem', 'UnfulfilledItem', 'OrderStatus',
]
