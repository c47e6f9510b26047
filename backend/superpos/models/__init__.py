from .catalog import Product
from .stock import StockMovement, MovementType
from .invoices import Invoice, InvoiceLine, DocumentSequence

__all__ = [
    'Product',
    'StockMovement', 'MovementType',
    'Invoice', 'InvoiceLine', 'DocumentSequence',
]
