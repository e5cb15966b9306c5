from .masterdata import Location, Item, Supplier
from .auth import User, UserLocation, SessionToken
from .periods import Period, PeriodLocation, ItemPrice
from .inventory import LocationStock
from .documents import Delivery, DeliveryLine, Issue, IssueLine, Transfer, TransferLine, DocumentSequence, LedgerEvent
from .procurement import PRF, PRFLine, PurchaseOrder, POLine
from .ncrs import NCR
from .reconciliation import POB, Reconciliation
from .approvals import Approval

__all__ = [
    'Location', 'Item', 'Supplier',
    'User', 'UserLocation', 'SessionToken',
    'Period', 'PeriodLocation', 'ItemPrice',
    'LocationStock',
    'Delivery', 'DeliveryLine', 'Issue', 'IssueLine', 'Transfer', 'TransferLine',
    'DocumentSequence', 'LedgerEvent',
    'PRF', 'PRFLine', 'PurchaseOrder', 'POLine',
    'NCR',
    'POB', 'Reconciliation',
    'Approval',
]
