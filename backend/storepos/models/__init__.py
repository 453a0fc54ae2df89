from .auth import User, SessionToken
from .catalog import Product, StockReservation, StockReservationLine, StockMovement
from .customers import Customer, LoyaltyAccrual
from .sales import Sale, SaleLine, Receipt
from .documents import DocumentSequence, AuditLog
from .reports import DailyReport

__all__ = [
    'User', 'SessionToken',
    'Product', 'StockReservation', 'StockReservationLine', 'StockMovement',
    'Customer', 'LoyaltyAccrual',
    'Sale', 'SaleLine', 'Receipt',
    'DocumentSequence', 'AuditLog',
    'DailyReport',
]
