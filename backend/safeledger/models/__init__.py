from .tenancy import Store, StoreReconciliationSettings
from .auth import User, UserStoreManagerAccess
from .shifts import Shift, DrawerCount
from .rollover import RolloverDay, RolloverEntry
from .closeouts import SafeCloseout, SafeCloseoutExpense, SafeCloseoutPhoto, SafePickup

__all__ = [
    'Store', 'StoreReconciliationSettings',
    'User', 'UserStoreManagerAccess',
    'Shift', 'DrawerCount',
    'RolloverDay', 'RolloverEntry',
    'SafeCloseout', 'SafeCloseoutExpense', 'SafeCloseoutPhoto', 'SafePickup',
]
