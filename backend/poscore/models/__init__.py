from .tenancy import Business, Store, Till
from .customers import Customer
from .auth import User, SessionToken
from .catalog import Unit, Product, ProductUnit
from .accounting import Account, JournalEntry, JournalLine, Expense
from .inventory import InventoryBalance, StockMovement, StockAdjustment
from .sales import SalesInvoice, SalesInvoiceLine, SalesPayment, SalesReturn
from .purchases import PurchaseInvoice, PurchaseInvoiceLine, PurchasePayment
from .registers import Shift, ShiftClosure, CashDrawerEntry
from .documents import StockTransfer, StockTransferLine, DocumentSequence
from .audit import AuditLog, RiskAlert

__all__ = [
    'Business', 'Store', 'Till', 'Customer',
    'User', 'SessionToken',
    'Unit', 'Product', 'ProductUnit',
    'Account', 'JournalEntry', 'JournalLine', 'Expense',
    'InventoryBalance', 'StockMovement', 'StockAdjustment',
    'SalesInvoice', 'SalesInvoiceLine', 'SalesPayment', 'SalesReturn',
    'PurchaseInvoice', 'PurchaseInvoiceLine', 'PurchasePayment',
    'Shift', 'ShiftClosure', 'CashDrawerEntry',
    'StockTransfer', 'StockTransferLine', 'DocumentSequence',
    'AuditLog', 'RiskAlert',
]
