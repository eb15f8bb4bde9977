from .auth import User, SessionToken
from .customers import Customer
from .inventory import Product
from .orders import CustomerPO, CustomerPOItem, CustomerPOStatusHistory
from .quickbooks import QBConnection

__all__ = [
    'User', 'SessionToken',
    'Customer',
    'Product',
    'CustomerPO', 'CustomerPOItem', 'CustomerPOStatusHistory',
    'QBConnection',
]
