from .catalog import (
    Product, BatchedProduct, PrescriptionProduct, RecipeProduct, VariantProduct, RecipeComponent,
)
from .inventory import Batch
from .customers import Customer, CustomerPayment
from .sales import Sale, SaleLine, SaleBatchUse
from .cash import CashDrawerSession, CashMovement
from .stats import RunningStats, DailyStat
from .ledger import LedgerEvent

__all__ = [
    'Product', 'BatchedProduct', 'PrescriptionProduct', 'RecipeProduct', 'VariantProduct', 'RecipeComponent',
    'Batch',
    'Customer', 'CustomerPayment',
    'Sale', 'SaleLine', 'SaleBatchUse',
    'CashDrawerSession', 'CashMovement',
    'RunningStats', 'DailyStat',
    'LedgerEvent',
]
