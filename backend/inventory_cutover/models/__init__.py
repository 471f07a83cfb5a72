from .catalog import Location, Product, CatalogMapping
from .inventory import InventoryLot, Supplier, SupplierProduct, SupplierCostHistory, OPENING_BALANCE
from .cutover import Cutover, CutoverLock, CostApproval
from .extraction import ExtractionSession, ExtractionBatch

__all__ = [
    'Location', 'Product', 'CatalogMapping',
    'InventoryLot', 'Supplier', 'SupplierProduct', 'SupplierCostHistory', 'OPENING_BALANCE',
    'Cutover', 'CutoverLock', 'CostApproval',
    'ExtractionSession', 'ExtractionBatch',
]
