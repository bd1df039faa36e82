# Overview: Permission category constants for grouping related permissions.


class PermissionCategory:
    """Permission categories for organization and UI display."""
    CLIENTS = "CLIENTS"
    INVENTORY = "INVENTORY"
    ORDERS = "ORDERS"
    TRANSFERS = "TRANSFERS"
    WORKSHOPS = "WORKSHOPS"
    FACTORIES = "FACTORIES"
    EMPLOYEES = "EMPLOYEES"
    FINANCE = "FINANCE"
    SYSTEM = "SYSTEM"
