# Overview: Default permission sets per role.

from .definitions import PERMISSION_DEFINITIONS


_ALL_CODES = [perm[0] for perm in PERMISSION_DEFINITIONS]

DEFAULT_ROLE_PERMISSIONS = {
    # Admin: everything, including cross-entity access
    "admin": list(_ALL_CODES),
    # Manager: everything except unrestricted entity access
    "manager": [code for code in _ALL_CODES if code != "SYSTEM_ADMIN"],
    # Branch staff: day-to-day order desk
    "employee": [
        "VIEW_CLIENTS",
        "MANAGE_CLIENTS",
        "VIEW_CLOTHES",
        "VIEW_ORDERS",
        "CREATE_ORDERS",
        "MANAGE_ORDERS",
        "MANAGE_PAYMENTS",
        "MANAGE_CUSTODY",
        "VIEW_TRANSFERS",
        "CREATE_TRANSFERS",
        "VIEW_WORKSHOPS",
        "MANAGE_WORKSHOP_CLOTHES",
        "VIEW_EXPENSES",
        "MANAGE_EXPENSES",
        "VIEW_RECEIVABLES",
        "MANAGE_RECEIVABLES",
    ],
    # Factory staff only see their factory's tailoring items
    "factory_user": [
        "FACTORY_ORDERS",
    ],
}

DEFAULT_ROLES = {
    "admin": "Full access",
    "manager": "Manages branches, stock and staff",
    "employee": "Branch staff",
    "factory_user": "Factory staff",
}
