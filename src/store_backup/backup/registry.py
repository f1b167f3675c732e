"""Table topology of the retail platform.

Level 0 tables have no foreign keys; every table of level N references
only tables of levels < N.  Circular references are listed in
``CIRCULAR_FKS`` and must be nullable columns.
"""

import logging

from store_backup.adapters.base import RowClient
from store_backup.backup.models import CircularFK, TableRegistry

logger = logging.getLogger(__name__)

BACKUP_VERSION = "2.0"
BACKUP_FORMAT = "elfaroukgroup-backup"
BACKUP_SCHEMA = "elfaroukgroup"
BATCH_INSERT_SIZE = 500
EXPORT_PAGE_SIZE = 1000

# Rows deleted/filtered around the acting admin during a restore
PROTECTED_AUTH_USERS = "auth_users"
PROTECTED_USER_PROFILES = "user_profiles"
PROTECTED_BY_USER_ID = ("auth_sessions", "auth_accounts")

CIRCULAR_FKS: list[CircularFK] = [
    CircularFK(table="branches", column="manager_id", referenced_table="user_profiles"),
    CircularFK(table="user_profiles", column="branch_id", referenced_table="branches"),
    CircularFK(table="customers", column="linked_supplier_id", referenced_table="suppliers"),
    CircularFK(table="suppliers", column="linked_customer_id", referenced_table="customers"),
]

TABLE_LEVELS: list[list[str]] = [
    # Level 0 - no foreign keys
    [
        "brands",
        "categories",
        "branches",                 # manager_id circular
        "warehouses",
        "customer_groups",
        "supplier_groups",
        "payment_methods",
        "shipping_companies",
        "user_roles",
        "permission_categories",
        "permission_templates",
        "product_size_groups",
        "product_display_settings",
        "background_colors",
        "product_card_colors",
        "custom_currencies",
        "social_media_links",
        "social_media_settings",
    ],
    # Level 1
    [
        "auth_users",
        "shipping_governorates",
        "permission_definitions",
        "permission_template_restrictions",
        "permissions",
        "system_settings",
        "store_theme_colors",
        "custom_sections",
        "store_categories",
    ],
    # Level 2
    [
        "auth_sessions",
        "auth_accounts",
        "auth_verification_tokens",
        "user_profiles",            # branch_id circular
        "role_restrictions",
        "permission_restrictions",
        "shipping_areas",
        "pos_tabs_state",
        "user_branch_assignments",
        "product_import_history",
    ],
    # Level 3
    [
        "products",
        "suppliers",                # linked_customer_id circular
        "customers",                # linked_supplier_id circular
        "records",
        "api_settings",
        "expenses",
        "cashbox_entries",
        "cash_drawers",
        "user_column_preferences",
        "user_preferences",
    ],
    # Level 4
    [
        "product_images",
        "product_videos",
        "product_variants",
        "product_sizes",
        "product_votes",
        "product_ratings",
        "product_cost_tracking",
        "product_color_shape_definitions",
        "product_size_group_items",
        "product_location_thresholds",
        "inventory",
        "branch_stocks",
        "warehouse_stocks",
        "brand_products",
        "store_category_products",
        "favorites",
        "cart_items",
        "purchase_invoices",
        "orders",
        "whatsapp_contacts",
        "whatsapp_lid_mappings",
        "customer_merges",
        "supplier_merges",
    ],
    # Level 5
    [
        "sales",
        "purchase_invoice_items",
        "order_items",
        "payment_receipts",
        "product_variant_quantities",
        "whatsapp_messages",
        "whatsapp_reactions",
        "customer_payments",
        "supplier_payments",
    ],
    # Level 6
    [
        "sale_items",
        "cash_drawer_transactions",
    ],
]

WHATSAPP_TABLES = [
    "whatsapp_contacts",
    "whatsapp_lid_mappings",
    "whatsapp_messages",
    "whatsapp_reactions",
]

AUTH_SESSION_TABLES = [
    "auth_sessions",
    "auth_accounts",
    "auth_verification_tokens",
]

DEFAULT_REGISTRY = TableRegistry(
    levels=TABLE_LEVELS,
    circular_fks=CIRCULAR_FKS,
    messaging_tables=WHATSAPP_TABLES,
    session_tables=AUTH_SESSION_TABLES,
)

ALL_TABLES_ORDERED = DEFAULT_REGISTRY.all_tables()


async def check_circular_fk_nullability(
    adapter: RowClient, registry: TableRegistry = DEFAULT_REGISTRY
) -> list[str]:
    """Return circular FK columns that the live schema declares NOT NULL.

    Reads ``information_schema.columns``, so it needs a direct PostgreSQL
    connection.  Columns whose metadata cannot be read are logged and
    reported as ``"<table>.<column> (unknown: <error>)"``.
    """
    problems: list[str] = []
    for fk in registry.circular_fks:
        result = await adapter.select(
            "information_schema.columns",
            "is_nullable",
            filters={"table_name": fk.table, "column_name": fk.column},
        )
        if result.error:
            logger.warning(
                "Could not read metadata for %s.%s: %s", fk.table, fk.column, result.error
            )
            problems.append(f"{fk.table}.{fk.column} (unknown: {result.error})")
        elif not result.data:
            problems.append(f"{fk.table}.{fk.column} (column not found)")
        elif any(row.get("is_nullable") != "YES" for row in result.data):
            problems.append(f"{fk.table}.{fk.column}")
    return problems
