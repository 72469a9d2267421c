from .catalog import Product, Variant
from .inventory import LedgerEntry, LedgerImmutableError
from .orders import (
    DeliveryAddress,
    VariantSnapshot,
    Order,
    OrderItem,
    Transaction,
    Shipment,
    OrderStatusChange,
)
from .returns import Return, ReturnItem
from .sequences import DocumentSequence

__all__ = [
    'Product', 'Variant',
    'LedgerEntry', 'LedgerImmutableError',
    'DeliveryAddress', 'VariantSnapshot',
    'Order', 'OrderItem', 'Transaction', 'Shipment', 'OrderStatusChange',
    'Return', 'ReturnItem',
    'DocumentSequence',
]
