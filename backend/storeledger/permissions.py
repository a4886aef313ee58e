"""
Permission System Constants and Definitions

WHY: Centralized permission definitions ensure consistency across the application.
All permission codes and role mappings defined here.

DESIGN PRINCIPLES:
- Permissions are granular (one action per permission)
- Roles are fixed (ADMIN, MANAGER, OPERATOR); role management is not exposed
- Fail closed: unknown role or unknown code means no access
"""

# =============================================================================
# PERMISSION DEFINITIONS
# =============================================================================

class PermissionCategory:
    """Permission categories for organization."""
    SALES = "SALES"
    INVENTORY = "INVENTORY"
    CASH = "CASH"
    REPORTS = "REPORTS"


# Each permission is defined as: (code, name, description, category)
PERMISSION_DEFINITIONS = [
    # SALES PERMISSIONS
    (
        "CHECKOUT",
        "Checkout",
        "Commit a POS sale (order, stock deduction, payment)",
        PermissionCategory.SALES
    ),
    (
        "SEARCH_PRODUCTS",
        "Search Products",
        "Look up products and availability at the POS",
        PermissionCategory.SALES
    ),

    # INVENTORY PERMISSIONS
    (
        "VIEW_STOCK_MOVEMENTS",
        "View Stock Movements",
        "View the stock movement audit trail (operators see their own)",
        PermissionCategory.INVENTORY
    ),
    (
        "ADJUST_STOCK",
        "Adjust Stock",
        "Set stock quantities after a physical count",
        PermissionCategory.INVENTORY
    ),
    (
        "VIEW_STOCK_ALERTS",
        "View Stock Alerts",
        "View products at or below their reorder point",
        PermissionCategory.INVENTORY
    ),
    (
        "VIEW_ALL_STOCK_MOVEMENTS",
        "View All Stock Movements",
        "View and filter stock movements of every user",
        PermissionCategory.INVENTORY
    ),

    # CASH PERMISSIONS
    (
        "CLOSE_CASH",
        "Close Cash",
        "Submit a blind cash closing",
        PermissionCategory.CASH
    ),
    (
        "VIEW_CASH_CLOSINGS",
        "View Cash Closings",
        "View cash closing history with expected values and alerts",
        PermissionCategory.CASH
    ),

    # REPORTS PERMISSIONS
    (
        "VIEW_DASHBOARD",
        "View Dashboard",
        "View sales KPIs, the daily sales series and top products",
        PermissionCategory.REPORTS
    ),
    (
        "VIEW_LIVE_SALES",
        "View Live Sales",
        "View sales committed in the last minutes",
        PermissionCategory.REPORTS
    ),
]


# =============================================================================
# DEFAULT ROLE MAPPINGS
# =============================================================================

DEFAULT_ROLE_PERMISSIONS = {
    "ADMIN": [
        # Admin gets ALL permissions
        "CHECKOUT",
        "SEARCH_PRODUCTS",
        "VIEW_STOCK_MOVEMENTS",
        "VIEW_ALL_STOCK_MOVEMENTS",
        "ADJUST_STOCK",
        "VIEW_STOCK_ALERTS",
        "CLOSE_CASH",
        "VIEW_CASH_CLOSINGS",
        "VIEW_DASHBOARD",
        "VIEW_LIVE_SALES",
    ],
    "MANAGER": [
        "CHECKOUT",
        "SEARCH_PRODUCTS",
        "VIEW_STOCK_MOVEMENTS",
        "VIEW_ALL_STOCK_MOVEMENTS",
        "ADJUST_STOCK",
        "VIEW_STOCK_ALERTS",
        "CLOSE_CASH",
        "VIEW_DASHBOARD",
    ],
    "OPERATOR": [
        "CHECKOUT",
        "SEARCH_PRODUCTS",
        "VIEW_STOCK_MOVEMENTS",
        "CLOSE_CASH",
    ],
}


class PermissionDeniedError(Exception):
    """Raised when a role lacks a required permission."""
    pass


def get_all_permission_codes() -> list[str]:
    """Get list of all permission codes."""
    return [perm[0] for perm in PERMISSION_DEFINITIONS]


def validate_role_permissions(role_permissions: dict | None = None) -> None:
    """
    Check a role map against PERMISSION_DEFINITIONS.

    Raises ValueError when a role grants a code that is not defined, or
    when ADMIN lacks a defined code. Called once at app startup.
    """
    if role_permissions is None:
        role_permissions = DEFAULT_ROLE_PERMISSIONS

    defined = get_all_permission_codes()
    for role, codes in role_permissions.items():
        unknown = sorted(set(codes) - set(defined))
        if unknown:
            raise ValueError(f"Role {role} grants undefined permissions: {', '.join(unknown)}")

    missing = [code for code in defined if code not in role_permissions.get("ADMIN", [])]
    if missing:
        raise ValueError(f"ADMIN is missing permissions: {', '.join(missing)}")


def get_role_permissions(role: str | None) -> set[str]:
    return set(DEFAULT_ROLE_PERMISSIONS.get(role or "", []))


def has_permission(role: str | None, permission_code: str) -> bool:
    return permission_code in get_role_permissions(role)


def require_permission(role: str | None, permission_code: str) -> None:
    """Raise PermissionDeniedError unless `role` carries `permission_code`."""
    if not has_permission(role, permission_code):
        raise PermissionDeniedError(f"Permission denied: {permission_code} required")
