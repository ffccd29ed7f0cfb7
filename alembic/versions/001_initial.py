"""Users, recent_documents and favorited_documents.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-16

App startup runs Base.metadata.create_all before upgrading, so each table is
only created here when it is missing.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _existing_tables():
    return set(sa.inspect(op.get_bind()).get_table_names())


def upgrade() -> None:
    existing = _existing_tables()

    if "users" not in existing:
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("firebase_uid", sa.String(length=128), nullable=False),
            sa.Column("email", sa.String(), nullable=False),
            sa.Column("display_name", sa.String(), nullable=True),
            sa.Column("subscription_tier", sa.String(), nullable=False, server_default="FREEMIUM"),
            sa.Column("monthly_generations_used", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("monthly_generations_limit", sa.Integer(), nullable=False, server_default="2"),
            sa.Column("subscription_status", sa.String(), nullable=False, server_default="active"),
            sa.Column("stripe_customer_id", sa.String(), nullable=True),
            sa.Column("stripe_subscription_id", sa.String(), nullable=True),
            sa.Column("subscription_start_date", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        )
        op.create_index("ix_users_id", "users", ["id"])
        op.create_index("ix_users_firebase_uid", "users", ["firebase_uid"], unique=True)
        op.create_index("ix_users_email", "users", ["email"], unique=True)
        op.create_index("ix_users_stripe_customer_id", "users", ["stripe_customer_id"])

    if "recent_documents" not in existing:
        op.create_table(
            "recent_documents",
            sa.Column("id", sa.String(length=36), primary_key=True),
            sa.Column(
                "user_id",
                sa.String(length=128),
                sa.ForeignKey("users.firebase_uid", ondelete="CASCADE"),
                nullable=False,
            ),
            sa.Column("document_type", sa.String(), nullable=False),
            sa.Column("html_content", sa.Text(), nullable=False),
            sa.Column("content_hash", sa.String(length=64), nullable=False),
            sa.Column("position", sa.Integer(), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        )
        op.create_index("ix_recent_documents_user_id", "recent_documents", ["user_id"])
        op.create_index("idx_recent_documents_user_position", "recent_documents", ["user_id", "position"])

    if "favorited_documents" not in existing:
        op.create_table(
            "favorited_documents",
            sa.Column("id", sa.String(length=36), primary_key=True),
            sa.Column(
                "user_id",
                sa.String(length=128),
                sa.ForeignKey("users.firebase_uid", ondelete="CASCADE"),
                nullable=False,
            ),
            sa.Column("document_type", sa.String(), nullable=False),
            sa.Column("html_content", sa.Text(), nullable=False),
            sa.Column("content_hash", sa.String(length=64), nullable=False),
            sa.Column("position", sa.Integer(), nullable=False),
            sa.Column("favorited_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
            sa.UniqueConstraint(
                "user_id", "document_type", "content_hash", name="uq_favorited_documents_content"
            ),
        )
        op.create_index("ix_favorited_documents_user_id", "favorited_documents", ["user_id"])
        op.create_index(
            "idx_favorited_documents_user_position", "favorited_documents", ["user_id", "position"]
        )


def downgrade() -> None:
    op.drop_table("favorited_documents")
    op.drop_table("recent_documents")
    op.drop_table("users")
