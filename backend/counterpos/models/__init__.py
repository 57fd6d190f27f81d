from .auth import User, UserRole, SessionToken
from .inventory import Product, StockLog, StockChangeType
from .customers import Customer, LoyaltyTransaction, LoyaltyTransactionType
from .sales import Sale, SaleItem, Payment, PaymentMethod

__all__ = [
    'User', 'UserRole', 'SessionToken',
    'Product', 'StockLog', 'StockChangeType',
    'Customer', 'LoyaltyTransaction', 'LoyaltyTransactionType',
    'Sale', 'SaleItem', 'Payment', 'PaymentMethod',
]
