from .inventory import Product, ProductBatch, InventoryMovement, ImmutableRecordError
from .customers import Customer
from .sales import Sale, SaleLine

__all__ = [
    'Product', 'ProductBatch', 'InventoryMovement', 'ImmutableRecordError',
    'Customer',
    'Sale', 'SaleLine',
]
