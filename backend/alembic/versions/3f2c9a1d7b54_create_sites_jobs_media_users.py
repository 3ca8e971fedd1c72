"""create users, provisioned sites, provisioning jobs and media

Revision ID: 3f2c9a1d7b54
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "3f2c9a1d7b54"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("role", sa.String(length=30), nullable=False, server_default="admin"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "provisioned_sites",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("subdomain", sa.String(length=63), nullable=False),
        sa.Column("owner_email", sa.String(length=320), nullable=False),
        sa.Column("owner_name", sa.String(length=200), nullable=True),
        sa.Column("site_name", sa.String(length=200), nullable=True),
        sa.Column("site_description", sa.Text(), nullable=True),
        sa.Column("plan", sa.String(length=20), nullable=False, server_default="basic"),
        sa.Column("status", sa.String(length=30), nullable=False, server_default="pending"),
        sa.Column("provisioning_error", sa.Text(), nullable=True),
        sa.Column("provisioned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deployment_id", sa.String(length=128), nullable=True),
        sa.Column("site_api_key", sa.String(length=128), nullable=True),
        sa.Column("stripe_customer_id", sa.String(length=128), nullable=True),
        sa.Column("stripe_subscription_id", sa.String(length=128), nullable=True),
        sa.Column("stripe_checkout_session_id", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_provisioned_sites_subdomain", "provisioned_sites", ["subdomain"], unique=True)
    op.create_index("ix_provisioned_sites_owner_email", "provisioned_sites", ["owner_email"])
    op.create_index("ix_provisioned_sites_site_api_key", "provisioned_sites", ["site_api_key"])
    op.create_index(
        "ix_provisioned_sites_stripe_subscription_id",
        "provisioned_sites",
        ["stripe_subscription_id"],
    )

    op.create_table(
        "provisioning_jobs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("task", sa.String(length=64), nullable=False),
        sa.Column(
            "site_id",
            sa.Integer(),
            sa.ForeignKey("provisioned_sites.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="queued"),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("run_after", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_provisioning_jobs_site_id", "provisioning_jobs", ["site_id"])
    op.create_index("ix_provisioning_jobs_status", "provisioning_jobs", ["status"])

    op.create_table(
        "media",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("filename", sa.String(length=255), nullable=False),
        sa.Column("mime_type", sa.String(length=255), nullable=False),
        sa.Column("filesize", sa.Integer(), nullable=True),
        sa.Column("url", sa.String(length=2048), nullable=False),
        sa.Column("alt", sa.String(length=500), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_media_mime_type", "media", ["mime_type"])


def downgrade() -> None:
    op.drop_index("ix_media_mime_type", table_name="media")
    op.drop_table("media")

    op.drop_index("ix_provisioning_jobs_status", table_name="provisioning_jobs")
    op.drop_index("ix_provisioning_jobs_site_id", table_name="provisioning_jobs")
    op.drop_table("provisioning_jobs")

    op.drop_index("ix_provisioned_sites_stripe_subscription_id", table_name="provisioned_sites")
    op.drop_index("ix_provisioned_sites_site_api_key", table_name="provisioned_sites")
    op.drop_index("ix_provisioned_sites_owner_email", table_name="provisioned_sites")
    op.drop_index("ix_provisioned_sites_subdomain", table_name="provisioned_sites")
    op.drop_table("provisioned_sites")

    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
