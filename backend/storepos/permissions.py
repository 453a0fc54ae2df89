# Overview: Closed role model and the capability map checked at the authorization boundary.

"""
Roles are a closed set. Each role maps to a fixed set of capability codes;
routes declare the capability they need and ``require_permission`` checks it
exactly once per request.

Ownership rules (e.g. "a cashier may only cancel their own sales") are not
capabilities; they are enforced by the services that own the record.
"""

from __future__ import annotations

from enum import Enum


class Role(str, Enum):
    ADMIN = "admin"
    MANAGER = "manager"
    CASHIER = "cashier"

    @classmethod
    def parse(cls, value: str) -> "Role":
        try:
            return cls(value.strip().lower())
        except (AttributeError, ValueError):
            raise ValueError(f"Unknown role: {value!r}")


# -- SALES --
CREATE_SALE = "CREATE_SALE"
VIEW_SALES = "VIEW_SALES"
CANCEL_SALE = "CANCEL_SALE"
CANCEL_ANY_SALE = "CANCEL_ANY_SALE"

# -- CATALOG --
VIEW_PRODUCTS = "VIEW_PRODUCTS"
MANAGE_PRODUCTS = "MANAGE_PRODUCTS"
VIEW_INVENTORY = "VIEW_INVENTORY"
ADJUST_INVENTORY = "ADJUST_INVENTORY"

# -- CUSTOMERS --
MANAGE_CUSTOMERS = "MANAGE_CUSTOMERS"

# -- REPORTS --
VIEW_REPORTS = "VIEW_REPORTS"
GENERATE_REPORTS = "GENERATE_REPORTS"
VIEW_ANALYTICS = "VIEW_ANALYTICS"


PERMISSION_DEFINITIONS = {
    CREATE_SALE: "Ring up a sale and print its receipt",
    VIEW_SALES: "View sales and receipts",
    CANCEL_SALE: "Cancel a sale (own sales only unless CANCEL_ANY_SALE)",
    CANCEL_ANY_SALE: "Cancel sales rung up by other operators",
    VIEW_PRODUCTS: "View the product catalog",
    MANAGE_PRODUCTS: "Create, edit and deactivate products",
    VIEW_INVENTORY: "View stock levels and stock movements",
    ADJUST_INVENTORY: "Apply manual stock adjustments",
    MANAGE_CUSTOMERS: "Register and look up loyalty customers",
    VIEW_REPORTS: "View daily reports",
    GENERATE_REPORTS: "Generate or regenerate daily reports",
    VIEW_ANALYTICS: "View the live dashboard summary",
}


ROLE_PERMISSIONS: dict[Role, frozenset[str]] = {
    Role.ADMIN: frozenset(PERMISSION_DEFINITIONS),
    Role.MANAGER: frozenset({
        VIEW_SALES,
        CANCEL_SALE,
        CANCEL_ANY_SALE,
        VIEW_PRODUCTS,
        MANAGE_PRODUCTS,
        VIEW_INVENTORY,
        ADJUST_INVENTORY,
        MANAGE_CUSTOMERS,
        VIEW_REPORTS,
        VIEW_ANALYTICS,
    }),
    Role.CASHIER: frozenset({
        CREATE_SALE,
        VIEW_SALES,
        CANCEL_SALE,
        VIEW_PRODUCTS,
        MANAGE_CUSTOMERS,
    }),
}


def get_role_permissions(role: Role | str) -> frozenset[str]:
    if not isinstance(role, Role):
        role = Role.parse(role)
    return ROLE_PERMISSIONS[role]


def has_permission(role: Role | str, permission_code: str) -> bool:
    if permission_code not in PERMISSION_DEFINITIONS:
        raise ValueError(f"Unknown permission code: {permission_code}")
    return permission_code in get_role_permissions(role)
