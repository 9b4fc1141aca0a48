"""Track fulfillment attempts on orders and shortfall rows

Revision ID: 20261017_attempts
Revises: 20261017_initial
Create Date: 2026-10-17

An order put back to PENDING and fulfilled again keeps the shortfall rows of
its earlier fulfillment. Stamping each row with the attempt that wrote it lets
reports count only the latest one.
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261017_attempts"
down_revision = "20261017_initial"
branch_labels = None
depends_on = None


def upgrade():
    with op.batch_alter_table("orders", schema=None) as batch_op:
        batch_op.add_column(sa.Column("fulfillment_attempt", sa.Integer(), nullable=False, server_default="0"))

    with op.batch_alter_table("unfulfilled_items", schema=None) as batch_op:
        batch_op.add_column(sa.Column("attempt", sa.Integer(), nullable=False, server_default="1"))

    # Orders fulfilled before this revision have exactly one recorded attempt
    op.execute("UPDATE orders SET fulfillment_attempt = 1 WHERE fulfilled_at IS NOT NULL")


def downgrade():
    with op.batch_alter_table("unfulfilled_items", schema=None) as batch_op:
        batch_op.drop_column("attempt")

    with op.batch_alter_table("orders", schema=None) as batch_op:
        batch_op.drop_column("fulfillment_attempt")
