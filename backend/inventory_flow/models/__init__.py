from .auth import User, SessionToken, USER_ROLES
from .inventory import Product, InventoryAdjustment, ADJUSTMENT_TYPES
from .customers import Customer, CustomerPayment, CUSTOMER_TYPES
from .orders import Order, OrderLine, Invoice, ORDER_STATUSES
from .returns import ReturnRequest, ReturnLine, RETURN_STATUSES, RETURN_CONDITIONS
from .audit import AuditEntry, AUDIT_ACTIONS
from .documents import DocumentSequence

__all__ = [
    'User', 'SessionToken', 'USER_ROLES',
    'Product', 'InventoryAdjustment', 'ADJUSTMENT_TYPES',
    'Customer', 'CustomerPayment', 'CUSTOMER_TYPES',
    'Order', 'OrderLine', 'Invoice', 'ORDER_STATUSES',
    'ReturnRequest', 'ReturnLine', 'RETURN_STATUSES', 'RETURN_CONDITIONS',
    'AuditEntry', 'AUDIT_ACTIONS',
    'DocumentSequence',
]
