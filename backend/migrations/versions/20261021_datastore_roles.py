"""Split app and service database roles (PostgreSQL only)

Revision ID: 20261021_roles
Revises: 20261020_customers
Create Date: 2026-10-21

This migration adds:
1. inventory_flow_app: the ordinary role. Reads everything, edits drafts,
   catalog fields and contact data, submits returns, issues invoices.
   It cannot move stock, balances or order/return status.
2. inventory_flow_service: member of inventory_flow_app, plus the writes
   behind confirm, cancel, deliver, restock, adjustment, return resolution,
   customer payments and the draft reaper.
3. Membership of both roles for the migrating login role, so the same
   DATABASE_URL can SET LOCAL ROLE into either (DATABASE_APP_ROLE /
   DATABASE_SERVICE_ROLE).

Both roles are NOLOGIN. On other databases this revision does nothing.
"""
from alembic import op


# revision identifiers, used by Alembic.
revision = "20261021_roles"
down_revision = "20261020_customers"
branch_labels = None
depends_on = None


APP_ROLE = "inventory_flow_app"
SERVICE_ROLE = "inventory_flow_service"

# table -> (privileges, columns or None for the whole table)
APP_GRANTS = {
    "users": [("INSERT, UPDATE", None)],
    "session_tokens": [("INSERT, UPDATE", None)],
    "document_sequences": [("INSERT, UPDATE", None)],
    "audit_entries": [("INSERT", None)],
    "products": [
        ("INSERT, DELETE", None),
        ("UPDATE", (
            "sku", "name", "description", "price_per_piece_cents", "wholesale_cost_per_piece_cents",
            "pieces_per_case", "low_stock_threshold", "is_active", "version_id", "updated_at",
        )),
    ],
    "customers": [
        ("INSERT, DELETE", None),
        ("UPDATE", (
            "name", "phone", "email", "address", "customer_type", "credit_limit_cents",
            "is_active", "version_id", "updated_at",
        )),
    ],
    "orders": [
        ("INSERT, DELETE", None),
        ("UPDATE", (
            "customer_id", "customer_name", "payment_method", "reference_number",
            "discount_kind", "discount_value", "subtotal_cents", "discount_amount_cents",
            "total_amount_cents", "version_id", "updated_at",
        )),
    ],
    "order_lines": [
        ("INSERT, DELETE", None),
        ("UPDATE", ("cases_ordered",)),
    ],
    "invoices": [
        ("INSERT", None),
        ("UPDATE", ("document_ref",)),
    ],
    "return_requests": [("INSERT", None)],
    "return_lines": [("INSERT", None)],
}

SERVICE_GRANTS = {
    "products": [("UPDATE", None)],
    "customers": [("UPDATE", None)],
    "orders": [("UPDATE", None)],
    "return_requests": [("UPDATE", None)],
    "return_lines": [("UPDATE", None)],
    "inventory_adjustments": [("INSERT", None)],
    "customer_payments": [("INSERT", None)],
}

ALL_TABLES = (
    "users", "session_tokens", "products", "document_sequences", "customers",
    "customer_payments", "orders", "order_lines", "invoices", "return_requests",
    "return_lines", "inventory_adjustments", "audit_entries",
)


def _grant_statements(role, grants):
    for table, entries in grants.items():
        for privileges, columns in entries:
            if columns:
                privileges = ", ".join(f"{p.strip()} ({', '.join(columns)})" for p in privileges.split(","))
            yield f"GRANT {privileges} ON {table} TO {role}"


def upgrade():
    if op.get_bind().dialect.name != "postgresql":
        return

    op.execute(f"""
        DO $$
        BEGIN
            IF NOT EXISTS (SELECT 1 FROM pg_roles WHERE rolname = '{APP_ROLE}') THEN
                CREATE ROLE {APP_ROLE} NOLOGIN;
            END IF;
            IF NOT EXISTS (SELECT 1 FROM pg_roles WHERE rolname = '{SERVICE_ROLE}') THEN
                CREATE ROLE {SERVICE_ROLE} NOLOGIN;
            END IF;
        END
        $$;
    """)

    op.execute(f"GRANT SELECT ON {', '.join(ALL_TABLES)} TO {APP_ROLE}")
    op.execute(f"GRANT USAGE, SELECT ON ALL SEQUENCES IN SCHEMA public TO {APP_ROLE}")
    for statement in _grant_statements(APP_ROLE, APP_GRANTS):
        op.execute(statement)

    op.execute(f"GRANT {APP_ROLE} TO {SERVICE_ROLE}")
    for statement in _grant_statements(SERVICE_ROLE, SERVICE_GRANTS):
        op.execute(statement)

    op.execute(f"GRANT {APP_ROLE}, {SERVICE_ROLE} TO CURRENT_USER")


def downgrade():
    if op.get_bind().dialect.name != "postgresql":
        return

    tables = ", ".join(ALL_TABLES)
    for role in (SERVICE_ROLE, APP_ROLE):
        op.execute(f"REVOKE ALL ON {tables} FROM {role}")
        op.execute(f"REVOKE ALL ON ALL SEQUENCES IN SCHEMA public FROM {role}")
    op.execute(f"REVOKE {APP_ROLE} FROM {SERVICE_ROLE}")
    op.execute(f"REVOKE {APP_ROLE}, {SERVICE_ROLE} FROM CURRENT_USER")
    op.execute(f"DROP ROLE IF EXISTS {SERVICE_ROLE}")
    op.execute(f"DROP ROLE IF EXISTS {APP_ROLE}")
