"""create tenants, users, products and the epic/feature/task hierarchy

Revision ID: tk0001
Revises:
Create Date: 2026-10-19
"""
from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "tk0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ITEM_STATUS = ("backlog", "planned", "in_progress", "completed", "cancelled")


def _common_item_columns() -> list[sa.Column]:
    return [
        sa.Column("issue_key", sa.String(length=32), nullable=True, unique=True),
        sa.Column("external_id", sa.String(length=128), nullable=True),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", sa.Enum(*ITEM_STATUS, name="itemstatus"), nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("created_by", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("labels", sa.JSON(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "tenants",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("slug", sa.String(length=64), nullable=False, unique=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("tenant_id", sa.Integer(), sa.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("password_hash", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_users_tenant_id", "users", ["tenant_id"])
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("tenant_id", sa.Integer(), sa.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("code", sa.String(length=16), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_products_tenant_id", "products", ["tenant_id"])
    op.create_index("ix_products_name", "products", ["name"])

    op.create_table(
        "product_sequences",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("product_id", sa.Integer(), sa.ForeignKey("products.id", ondelete="CASCADE"), nullable=False),
        sa.Column("issue_type", sa.String(length=1), nullable=False),
        sa.Column("next_num", sa.Integer(), nullable=False),
        sa.UniqueConstraint("product_id", "issue_type", name="ux_product_sequences_product_type"),
    )
    op.create_index("ix_product_sequences_product_id", "product_sequences", ["product_id"])

    op.create_table(
        "epics",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("tenant_id", sa.Integer(), sa.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False),
        sa.Column("product_id", sa.Integer(), sa.ForeignKey("products.id", ondelete="CASCADE"), nullable=False),
        sa.Column("owner_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("color", sa.String(length=16), nullable=True),
        sa.Column("progress", sa.Integer(), nullable=False, server_default="0"),
        *_common_item_columns(),
        sa.UniqueConstraint("tenant_id", "external_id", name="ux_epics_tenant_external_id"),
    )
    op.create_index("ix_epics_tenant_id", "epics", ["tenant_id"])
    op.create_index("ix_epics_status", "epics", ["status"])

    op.create_table(
        "features",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("tenant_id", sa.Integer(), sa.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False),
        sa.Column("epic_id", sa.Integer(), sa.ForeignKey("epics.id", ondelete="CASCADE"), nullable=False),
        sa.Column("owner_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        *_common_item_columns(),
        sa.UniqueConstraint("tenant_id", "external_id", name="ux_features_tenant_external_id"),
    )
    op.create_index("ix_features_tenant_id", "features", ["tenant_id"])
    op.create_index("ix_features_epic_id", "features", ["epic_id"])
    op.create_index("ix_features_status", "features", ["status"])

    op.create_table(
        "dev_tasks",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("tenant_id", sa.Integer(), sa.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False),
        sa.Column("product_id", sa.Integer(), sa.ForeignKey("products.id", ondelete="CASCADE"), nullable=False),
        sa.Column("feature_id", sa.Integer(), sa.ForeignKey("features.id", ondelete="SET NULL"), nullable=True),
        sa.Column("type", sa.String(length=16), nullable=False, server_default="task"),
        sa.Column("implementor_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("developer_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        *_common_item_columns(),
        sa.UniqueConstraint("tenant_id", "external_id", name="ux_dev_tasks_tenant_external_id"),
    )
    op.create_index("ix_dev_tasks_tenant_id", "dev_tasks", ["tenant_id"])
    op.create_index("ix_dev_tasks_feature_id", "dev_tasks", ["feature_id"])
    op.create_index("ix_dev_tasks_status", "dev_tasks", ["status"])


def downgrade() -> None:
    for table in ("dev_tasks", "features", "epics"):
        op.drop_index(f"ix_{table}_status", table_name=table)
        op.drop_index(f"ix_{table}_tenant_id", table_name=table)
    op.drop_index("ix_dev_tasks_feature_id", table_name="dev_tasks")
    op.drop_index("ix_features_epic_id", table_name="features")
    op.drop_table("dev_tasks")
    op.drop_table("features")
    op.drop_table("epics")
    op.drop_index("ix_product_sequences_product_id", table_name="product_sequences")
    op.drop_table("product_sequences")
    op.drop_index("ix_products_name", table_name="products")
    op.drop_index("ix_products_tenant_id", table_name="products")
    op.drop_table("products")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_index("ix_users_tenant_id", table_name="users")
    op.drop_table("users")
    op.drop_table("tenants")
    sa.Enum(name="itemstatus").drop(op.get_bind(), checkfirst=True)
