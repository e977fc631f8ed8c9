from .catalog import ProductVariant, PriceModality
from .inventory import Warehouse, WarehouseStock, StockMovement, StockReservation
from .customers import Customer
from .orders import Order, OrderLine
from .sales import Sale, Payment
from .registers import CashierShift
from .documents import DocumentSequence
from .settings import SystemSetting

__all__ = [
    'ProductVariant', 'PriceModality',
    'Warehouse', 'WarehouseStock', 'StockMovement', 'StockReservation',
    'Customer',
    'Order', 'OrderLine',
    'Sale', 'Payment',
    'CashierShift',
    'DocumentSequence',
    'SystemSetting',
]
