"""Customers with installment balances, customer payments, customer_id on orders

Revision ID: 20261020_customers
Revises: 20261019_initial
Create Date: 2026-10-20
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261020_customers"
down_revision = "20261019_initial"
branch_labels = None
depends_on = None


def upgrade():
    op.create_table("customers",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("phone", sa.String(length=32), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("address", sa.String(length=512), nullable=True),
        sa.Column("customer_type", sa.String(length=16), nullable=False, server_default="walk_in"),
        sa.Column("credit_limit_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("outstanding_balance_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("outstanding_balance_cents >= 0", name="ck_customers_balance_non_negative"),
        sa.CheckConstraint("credit_limit_cents >= 0", name="ck_customers_credit_limit_non_negative"),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table("customers", schema=None) as batch_op:
        batch_op.create_index("ix_customers_active_name", ["is_active", "name"], unique=False)

    op.create_table("customer_payments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("customer_id", sa.Integer(), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("payment_method", sa.String(length=32), nullable=False),
        sa.Column("reference_number", sa.String(length=128), nullable=True),
        sa.Column("balance_before_cents", sa.Integer(), nullable=False),
        sa.Column("balance_after_cents", sa.Integer(), nullable=False),
        sa.Column("actor_user_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("amount_cents > 0", name="ck_customer_payments_amount_positive"),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"], ),
        sa.ForeignKeyConstraint(["actor_user_id"], ["users.id"], ),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table("customer_payments", schema=None) as batch_op:
        batch_op.create_index(batch_op.f("ix_customer_payments_customer_id"), ["customer_id"], unique=False)
        batch_op.create_index(batch_op.f("ix_customer_payments_actor_user_id"), ["actor_user_id"], unique=False)
        batch_op.create_index(batch_op.f("ix_customer_payments_created_at"), ["created_at"], unique=False)
        batch_op.create_index("ix_customer_payments_customer_created", ["customer_id", "created_at"], unique=False)

    with op.batch_alter_table("orders", schema=None) as batch_op:
        batch_op.add_column(sa.Column("customer_id", sa.Integer(), nullable=True))
        batch_op.create_foreign_key(
            "fk_orders_customer",
            "customers",
            ["customer_id"],
            ["id"],
        )
        batch_op.create_index("ix_orders_customer_id", ["customer_id"], unique=False)

    # Payments are append-only like the other ledgers; the function comes from the initial revision
    if op.get_bind().dialect.name == "postgresql":
        op.execute("""
            CREATE TRIGGER customer_payments_append_only
            BEFORE UPDATE OR DELETE OR TRUNCATE ON customer_payments
            FOR EACH STATEMENT EXECUTE FUNCTION reject_append_only_write();
        """)
        op.execute("REVOKE UPDATE, DELETE, TRUNCATE ON customer_payments FROM PUBLIC")


def downgrade():
    if op.get_bind().dialect.name == "postgresql":
        op.execute("DROP TRIGGER IF EXISTS customer_payments_append_only ON customer_payments")

    with op.batch_alter_table("orders", schema=None) as batch_op:
        batch_op.drop_index("ix_orders_customer_id")
        batch_op.drop_constraint("fk_orders_customer", type_="foreignkey")
        batch_op.drop_column("customer_id")

    op.drop_table("customer_payments")
    op.drop_table("customers")
