from .auth import User, Role, UserRole, Permission, RolePermission, SessionToken
from .entities import Inventory, Branch, Workshop, Factory, WorkshopLog
from .clothes import ClothType, Cloth, ClothHistory
from .clients import Client, ClientPhone
from .orders import Order, OrderItem, Payment, Rent, OrderHistory, TailoringStageLog, FactoryItemStatusLog
from .custody import Custody, CustodyPhoto, CustodyReturn
from .transfers import Transfer, TransferItem, TransferAction
from .employees import Employee, EmployeeEntityAssignment, EmployeeCustody
from .cashbox import Cashbox, CashboxTransaction
from .finance import Expense, Receivable, ReceivablePayment
from .notifications import Notification

__all__ = [
    'User', 'Role', 'UserRole', 'Permission', 'RolePermission', 'SessionToken',
    'Inventory', 'Branch', 'Workshop', 'Factory', 'WorkshopLog',
    'ClothType', 'Cloth', 'ClothHistory',
    'Client', 'ClientPhone',
    'Order', 'OrderItem', 'Payment', 'Rent', 'OrderHistory', 'TailoringStageLog', 'FactoryItemStatusLog',
    'Custody', 'CustodyPhoto', 'CustodyReturn',
    'Transfer', 'TransferItem', 'TransferAction',
    'Employee', 'EmployeeEntityAssignment', 'EmployeeCustody',
    'Cashbox', 'CashboxTransaction',
    'Expense', 'Receivable', 'ReceivablePayment',
    'Notification',
]
