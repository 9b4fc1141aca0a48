"""
Permission codes and the role -> permission mapping.

DESIGN PRINCIPLES:
- Permissions are granular (one action per permission)
- Roles are the closed set from identity.Role; there is no per-user override
- Only stock managers and admins can touch central inventory or fulfill orders
"""
from fieldsales.identity import Role


class PermissionCategory:
    CATALOG = "CATALOG"
    INVENTORY = "INVENTORY"
    ORDERS = "ORDERS"
    VISITS = "VISITS"
    REPORTS = "REPORTS"
    USERS = "USERS"


# Each permission is defined as: (code, description, category)
PERMISSION_DEFINITIONS = [
    ("VIEW_CATALOG", "View products and stores", PermissionCategory.CATALOG),
    ("MANAGE_PRODUCTS", "Create, edit and delete products", PermissionCategory.CATALOG),
    ("MANAGE_STORES", "Create and edit stores", PermissionCategory.CATALOG),

    ("VIEW_INVENTORY", "View central inventory and store stock positions", PermissionCategory.INVENTORY),
    ("MANAGE_INVENTORY", "Restock or set central inventory quantities", PermissionCategory.INVENTORY),

    ("CREATE_ORDERS", "Place orders for a store", PermissionCategory.ORDERS),
    ("VIEW_ORDERS", "View orders and their items", PermissionCategory.ORDERS),
    ("FULFILL_ORDERS", "Fulfill orders against central inventory", PermissionCategory.ORDERS),
    ("CHANGE_ORDER_STATUS", "Revert orders to PENDING or mark UNFULFILLED", PermissionCategory.ORDERS),

    ("RECORD_VISITS", "Check in at a store and reconcile its stock", PermissionCategory.VISITS),

    ("VIEW_REPORTS", "View shortfall, fulfillment and demand reports", PermissionCategory.REPORTS),

    ("MANAGE_USERS", "Mirror identity users locally", PermissionCategory.USERS),
]


ROLE_PERMISSIONS = {
    Role.ADMIN: {code for code, _, _ in PERMISSION_DEFINITIONS},
    Role.STOCK_MANAGER: {
        "VIEW_CATALOG",
        "VIEW_INVENTORY",
        "MANAGE_INVENTORY",
        "VIEW_ORDERS",
        "FULFILL_ORDERS",
        "CHANGE_ORDER_STATUS",
        "VIEW_REPORTS",
    },
    Role.SALESMAN: {
        "VIEW_CATALOG",
        "VIEW_INVENTORY",
        "CREATE_ORDERS",
        "VIEW_ORDERS",
        "RECORD_VISITS",
    },
}


def get_all_permission_codes():
    return [perm[0] for perm in PERMISSION_DEFINITIONS]


def role_has_permission(role: Role, code: str) -> bool:
    return code in ROLE_PERMISSIONS.get(role, set())


def validate_permission_code(code):
    return code in get_all_permission_codes()
