# Overview: All permission definitions organized by category.
# Each permission is defined as: (code, name, description, category)

from .categories import PermissionCategory


# -- CLIENTS --

CLIENT_PERMISSIONS = [
    ("VIEW_CLIENTS", "View Clients", "View clients, phones and measurements", PermissionCategory.CLIENTS),
    ("MANAGE_CLIENTS", "Manage Clients", "Create, edit and delete clients", PermissionCategory.CLIENTS),
]


# -- INVENTORY --

INVENTORY_PERMISSIONS = [
    ("VIEW_CLOTHES", "View Clothes", "View cloth pieces, history and availability", PermissionCategory.INVENTORY),
    ("MANAGE_CLOTHES", "Manage Clothes", "Create, edit, move and delete cloth pieces and types", PermissionCategory.INVENTORY),
    ("MANAGE_ENTITIES", "Manage Entities", "Create and edit branches, workshops and factories", PermissionCategory.INVENTORY),
]


# -- ORDERS --

ORDER_PERMISSIONS = [
    ("VIEW_ORDERS", "View Orders", "View orders, payments and custody", PermissionCategory.ORDERS),
    ("CREATE_ORDERS", "Create Orders", "Create rent, buy and tailoring orders", PermissionCategory.ORDERS),
    ("MANAGE_ORDERS", "Manage Orders", "Update, deliver, finish, cancel and return orders", PermissionCategory.ORDERS),
    ("DELETE_ORDERS", "Delete Orders", "Delete orders that hold no sold pieces", PermissionCategory.ORDERS),
    ("MANAGE_PAYMENTS", "Manage Payments", "Add, pay and cancel order payments", PermissionCategory.ORDERS),
    ("MANAGE_CUSTODY", "Manage Custody", "Record, update and return client custody", PermissionCategory.ORDERS),
    ("MANAGE_TAILORING", "Manage Tailoring", "Move tailoring stages and assign factories", PermissionCategory.ORDERS),
]


# -- TRANSFERS --

TRANSFER_PERMISSIONS = [
    ("VIEW_TRANSFERS", "View Transfers", "View transfer requests", PermissionCategory.TRANSFERS),
    ("CREATE_TRANSFERS", "Create Transfers", "Create and edit transfer requests", PermissionCategory.TRANSFERS),
    ("APPROVE_TRANSFERS", "Approve Transfers", "Approve or reject transfer items", PermissionCategory.TRANSFERS),
]


# -- WORKSHOPS / FACTORIES --

WORKSHOP_PERMISSIONS = [
    ("VIEW_WORKSHOPS", "View Workshops", "View workshops, their clothes and logs", PermissionCategory.WORKSHOPS),
    ("MANAGE_WORKSHOP_CLOTHES", "Manage Workshop Clothes", "Receive, process and return workshop clothes", PermissionCategory.WORKSHOPS),
]

FACTORY_PERMISSIONS = [
    ("FACTORY_ORDERS", "Factory Orders", "Work the tailoring items assigned to the user's factory", PermissionCategory.FACTORIES),
]


# -- EMPLOYEES --

EMPLOYEE_PERMISSIONS = [
    ("VIEW_EMPLOYEES", "View Employees", "View employees and their assignments", PermissionCategory.EMPLOYEES),
    ("MANAGE_EMPLOYEES", "Manage Employees", "Create, edit, terminate and delete employees", PermissionCategory.EMPLOYEES),
]


# -- FINANCE --

FINANCE_PERMISSIONS = [
    ("VIEW_CASHBOX", "View Cashbox", "View cashboxes and transactions", PermissionCategory.FINANCE),
    ("MANAGE_CASHBOX", "Manage Cashbox", "Record manual income/expense and reversals", PermissionCategory.FINANCE),
    ("VIEW_EXPENSES", "View Expenses", "View branch expenses and their summary", PermissionCategory.FINANCE),
    ("MANAGE_EXPENSES", "Manage Expenses", "Record, edit and cancel pending expenses", PermissionCategory.FINANCE),
    ("APPROVE_EXPENSES", "Approve Expenses", "Approve expenses and pay them from the cashbox", PermissionCategory.FINANCE),
    ("VIEW_RECEIVABLES", "View Receivables", "View client debts and their payments", PermissionCategory.FINANCE),
    ("MANAGE_RECEIVABLES", "Manage Receivables", "Open debts, collect payments and write them off", PermissionCategory.FINANCE),
    ("VIEW_REPORTS", "View Reports", "View business reports", PermissionCategory.FINANCE),
]


# -- SYSTEM --

SYSTEM_PERMISSIONS = [
    ("EXPORT_DATA", "Export Data", "Download CSV exports", PermissionCategory.SYSTEM),
    ("SYSTEM_ADMIN", "System Admin", "Unrestricted access to every entity", PermissionCategory.SYSTEM),
]


PERMISSION_DEFINITIONS = (
    CLIENT_PERMISSIONS
    + INVENTORY_PERMISSIONS
    + ORDER_PERMISSIONS
    + TRANSFER_PERMISSIONS
    + WORKSHOP_PERMISSIONS
    + FACTORY_PERMISSIONS
    + EMPLOYEE_PERMISSIONS
    + FINANCE_PERMISSIONS
    + SYSTEM_PERMISSIONS
)
