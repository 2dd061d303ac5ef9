"""Create SnipSafe schema

Revision ID: 001
Revises: None
Create Date: 2026-10-19 00:00:00.000000+00:00

What:  Creates users, snippets, snippet_tags, share_grants, presence_entries and
       app_config.
How:   Column defaults live in the ORM models (app/models); the database only
       enforces keys, uniqueness and foreign keys.

Rollback: downgrade() drops every table (destructive, all data lost).
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("username", sa.String(50), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("password_hash", sa.String(255), nullable=True,
                  comment="bcrypt hash; NULL for Azure AD accounts"),
        sa.Column("organization", sa.String(100), nullable=False),
        sa.Column("role", sa.String(20), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("auth_provider", sa.String(20), nullable=False),
        sa.Column("azure_id", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("username"),
        sa.UniqueConstraint("email"),
    )
    op.create_index("ix_users_organization", "users", ["organization"])

    op.create_table(
        "snippets",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("language", sa.String(50), nullable=False),
        sa.Column("description", sa.String(1000), nullable=True),
        sa.Column("owner_id", sa.Uuid(), nullable=False),
        sa.Column("organization", sa.String(100), nullable=False,
                  comment="Owner's organization at creation time"),
        sa.Column("visibility", sa.String(20), nullable=False,
                  comment="private, organization or public"),
        sa.Column("share_id", sa.String(36), nullable=False),
        sa.Column("views", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False,
                  comment="False once soft-deleted"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["owner_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("share_id"),
    )
    op.create_index("ix_snippets_owner_id", "snippets", ["owner_id"])
    op.create_index("idx_snippets_org_active", "snippets", ["organization", "is_active"])
    op.create_index("idx_snippets_created_at", "snippets", [sa.text("created_at DESC")])

    op.create_table(
        "snippet_tags",
        sa.Column("snippet_id", sa.Uuid(), nullable=False),
        sa.Column("tag", sa.String(50), nullable=False),
        sa.ForeignKeyConstraint(["snippet_id"], ["snippets.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("snippet_id", "tag"),
    )
    op.create_index("ix_snippet_tags_tag", "snippet_tags", ["tag"])

    op.create_table(
        "share_grants",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("snippet_id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=True,
                  comment="NULL until an account with this e-mail exists"),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("permission", sa.String(10), nullable=False),
        sa.Column("granted_by", sa.Uuid(), nullable=False),
        sa.Column("granted_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["snippet_id"], ["snippets.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["granted_by"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("snippet_id", "email", name="uq_share_grants_snippet_email"),
    )
    op.create_index("ix_share_grants_user_id", "share_grants", ["user_id"])
    op.create_index("ix_share_grants_email", "share_grants", ["email"])

    op.create_table(
        "presence_entries",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("snippet_id", sa.Uuid(), nullable=False),
        sa.Column("viewer_id", sa.Uuid(), nullable=False),
        sa.Column("last_seen", sa.DateTime(timezone=True), nullable=False),
        sa.Column("session_token", sa.String(255), nullable=True),
        sa.ForeignKeyConstraint(["snippet_id"], ["snippets.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["viewer_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_presence_snippet_viewer", "presence_entries", ["snippet_id", "viewer_id"]
    )

    op.create_table(
        "app_config",
        sa.Column("id", sa.Integer(), nullable=False,
                  comment="Always 1; the table holds a single row"),
        sa.Column("auth_mode", sa.String(20), nullable=False),
        sa.Column("allow_registration", sa.Boolean(), nullable=False),
        sa.Column("default_organization", sa.String(100), nullable=False),
        sa.Column("azure_ad_enabled", sa.Boolean(), nullable=False),
        sa.Column("azure_ad_client_id", sa.String(255), nullable=False),
        sa.Column("azure_ad_client_secret", sa.String(255), nullable=False),
        sa.Column("azure_ad_tenant_id", sa.String(255), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )


def downgrade() -> None:
    op.drop_table("app_config")
    op.drop_index("idx_presence_snippet_viewer", table_name="presence_entries")
    op.drop_table("presence_entries")
    op.drop_index("ix_share_grants_email", table_name="share_grants")
    op.drop_index("ix_share_grants_user_id", table_name="share_grants")
    op.drop_table("share_grants")
    op.drop_index("ix_snippet_tags_tag", table_name="snippet_tags")
    op.drop_table("snippet_tags")
    op.drop_index("idx_snippets_created_at", table_name="snippets")
    op.drop_index("idx_snippets_org_active", table_name="snippets")
    op.drop_index("ix_snippets_owner_id", table_name="snippets")
    op.drop_table("snippets")
    op.drop_index("ix_users_organization", table_name="users")
    op.drop_table("users")
