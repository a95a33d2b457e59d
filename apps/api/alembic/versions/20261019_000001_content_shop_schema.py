"""content shop schema: teams, credit ledger, generation jobs, batches, catalog sync

Revision ID: 20261019_000001
Revises:
Create Date: 2026-10-19 00:00:01.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261019_000001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade() -> None:
    op.create_table(
        "teams",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("plan_tier", sa.String(), nullable=True),
        sa.Column("overage_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("overage_limit_cents", sa.Integer(), nullable=True),
        sa.Column("stripe_customer_id", sa.String(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_teams_stripe_customer_id", "teams", ["stripe_customer_id"], unique=False)

    op.create_table(
        "users",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=True),
        sa.Column("team_id", sa.String(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["team_id"], ["teams.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_team_id", "users", ["team_id"], unique=False)

    op.create_table(
        "credit_periods",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("team_id", sa.String(), nullable=False),
        sa.Column("period_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("period_end", sa.DateTime(timezone=True), nullable=False),
        sa.Column("image_included", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("image_used", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("image_overage_used", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("text_included", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("text_used", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("text_overage_used", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("stripe_subscription_id", sa.String(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["team_id"], ["teams.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_credit_periods_team_id", "credit_periods", ["team_id"], unique=False)
    op.create_index("ix_credit_periods_period_start", "credit_periods", ["period_start"], unique=False)
    op.create_index("ix_credit_periods_period_end", "credit_periods", ["period_end"], unique=False)

    op.create_table(
        "usage_records",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("team_id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=True),
        sa.Column("credit_period_id", sa.String(), nullable=False),
        sa.Column("usage_type", sa.String(), nullable=False),
        sa.Column("credits_used", sa.Integer(), nullable=False),
        sa.Column("is_overage", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("reference_type", sa.String(), nullable=True),
        sa.Column("reference_id", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["team_id"], ["teams.id"]),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["credit_period_id"], ["credit_periods.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_usage_records_team_id", "usage_records", ["team_id"], unique=False)
    op.create_index("ix_usage_records_credit_period_id", "usage_records", ["credit_period_id"], unique=False)
    op.create_index("ix_usage_records_reference_id", "usage_records", ["reference_id"], unique=False)
    op.create_index("ix_usage_records_created_at", "usage_records", ["created_at"], unique=False)

    op.create_table(
        "batches",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("team_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="queued"),
        sa.Column("settings_json", sa.JSON(), nullable=True),
        sa.Column("variant_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("image_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("folder_id", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["team_id"], ["teams.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_batches_team_id", "batches", ["team_id"], unique=False)
    op.create_index("ix_batches_status", "batches", ["status"], unique=False)
    op.create_index("ix_batches_created_at", "batches", ["created_at"], unique=False)

    op.create_table(
        "generations",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("team_id", sa.String(), nullable=False),
        sa.Column("job_id", sa.String(), nullable=False),
        sa.Column("variant_id", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="ready"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["team_id"], ["teams.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_generations_team_id", "generations", ["team_id"], unique=False)
    op.create_index("ix_generations_job_id", "generations", ["job_id"], unique=False)
    op.create_index("ix_generations_variant_id", "generations", ["variant_id"], unique=False)

    op.create_table(
        "generated_images",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("team_id", sa.String(), nullable=False),
        sa.Column("generation_id", sa.String(), nullable=False),
        sa.Column("url", sa.String(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["team_id"], ["teams.id"]),
        sa.ForeignKeyConstraint(["generation_id"], ["generations.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_generated_images_team_id", "generated_images", ["team_id"], unique=False)
    op.create_index("ix_generated_images_generation_id", "generated_images", ["generation_id"], unique=False)

    op.create_table(
        "generation_jobs",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("team_id", sa.String(), nullable=False),
        sa.Column("product_id", sa.String(), nullable=False),
        sa.Column("variant_id", sa.String(), nullable=False),
        sa.Column("type", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="queued"),
        sa.Column("batch_id", sa.String(), nullable=True),
        sa.Column("generation_id", sa.String(), nullable=True),
        sa.Column("progress_json", sa.JSON(), nullable=True),
        sa.Column("error_message", sa.String(), nullable=True),
        sa.Column("payload_json", sa.JSON(), nullable=False),
        sa.Column("number_of_variations", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("credits_id", sa.String(), nullable=True),
        sa.Column("is_overage", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("retry_of_job_id", sa.String(), nullable=True),
        sa.Column("retry_attempt", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("queue_job_id", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["team_id"], ["teams.id"]),
        sa.ForeignKeyConstraint(["batch_id"], ["batches.id"]),
        sa.ForeignKeyConstraint(["generation_id"], ["generations.id"]),
        sa.ForeignKeyConstraint(["credits_id"], ["credit_periods.id"]),
        sa.ForeignKeyConstraint(["retry_of_job_id"], ["generation_jobs.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_generation_jobs_team_id", "generation_jobs", ["team_id"], unique=False)
    op.create_index("ix_generation_jobs_product_id", "generation_jobs", ["product_id"], unique=False)
    op.create_index("ix_generation_jobs_variant_id", "generation_jobs", ["variant_id"], unique=False)
    op.create_index("ix_generation_jobs_status", "generation_jobs", ["status"], unique=False)
    op.create_index("ix_generation_jobs_batch_id", "generation_jobs", ["batch_id"], unique=False)
    op.create_index("ix_generation_jobs_retry_of_job_id", "generation_jobs", ["retry_of_job_id"], unique=False)
    op.create_index("ix_generation_jobs_created_at", "generation_jobs", ["created_at"], unique=False)

    op.create_table(
        "commerce_accounts",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("team_id", sa.String(), nullable=False),
        sa.Column("provider", sa.String(), nullable=False, server_default="shopify"),
        sa.Column("shop_domain", sa.String(), nullable=False),
        sa.Column("access_token", sa.String(), nullable=True),
        sa.Column("status", sa.String(), nullable=False, server_default="connected"),
        *_timestamps(),
        sa.ForeignKeyConstraint(["team_id"], ["teams.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_commerce_accounts_team_id", "commerce_accounts", ["team_id"], unique=False)

    op.create_table(
        "sync_jobs",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("team_id", sa.String(), nullable=False),
        sa.Column("account_id", sa.String(), nullable=False),
        sa.Column("provider", sa.String(), nullable=False, server_default="shopify"),
        sa.Column("type", sa.String(), nullable=False, server_default="catalog_sync"),
        sa.Column("status", sa.String(), nullable=False, server_default="queued"),
        sa.Column("progress_json", sa.JSON(), nullable=True),
        sa.Column("metadata_json", sa.JSON(), nullable=True),
        sa.Column("error_message", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["team_id"], ["teams.id"]),
        sa.ForeignKeyConstraint(["account_id"], ["commerce_accounts.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_sync_jobs_team_id", "sync_jobs", ["team_id"], unique=False)
    op.create_index("ix_sync_jobs_account_id", "sync_jobs", ["account_id"], unique=False)
    op.create_index("ix_sync_jobs_status", "sync_jobs", ["status"], unique=False)
    op.create_index("ix_sync_jobs_created_at", "sync_jobs", ["created_at"], unique=False)

    op.create_table(
        "external_products",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("team_id", sa.String(), nullable=False),
        sa.Column("account_id", sa.String(), nullable=False),
        sa.Column("external_product_id", sa.String(), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("handle", sa.String(), nullable=True),
        sa.Column("status", sa.String(), nullable=True),
        sa.Column("product_type", sa.String(), nullable=True),
        sa.Column("vendor", sa.String(), nullable=True),
        sa.Column("tags", sa.String(), nullable=True),
        sa.Column("featured_image_url", sa.String(), nullable=True),
        sa.Column("raw_json", sa.JSON(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["team_id"], ["teams.id"]),
        sa.ForeignKeyConstraint(["account_id"], ["commerce_accounts.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("account_id", "external_product_id", name="uq_external_products_account_ext"),
    )
    op.create_index("ix_external_products_team_id", "external_products", ["team_id"], unique=False)
    op.create_index("ix_external_products_account_id", "external_products", ["account_id"], unique=False)

    op.create_table(
        "external_variants",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("team_id", sa.String(), nullable=False),
        sa.Column("account_id", sa.String(), nullable=False),
        sa.Column("external_product_id", sa.String(), nullable=False),
        sa.Column("external_variant_id", sa.String(), nullable=False),
        sa.Column("title", sa.String(), nullable=True),
        sa.Column("sku", sa.String(), nullable=True),
        sa.Column("price", sa.String(), nullable=True),
        sa.Column("selected_options_json", sa.JSON(), nullable=True),
        sa.Column("featured_image_url", sa.String(), nullable=True),
        sa.Column("raw_json", sa.JSON(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["team_id"], ["teams.id"]),
        sa.ForeignKeyConstraint(["account_id"], ["commerce_accounts.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("account_id", "external_variant_id", name="uq_external_variants_account_ext"),
    )
    op.create_index("ix_external_variants_team_id", "external_variants", ["team_id"], unique=False)
    op.create_index("ix_external_variants_account_id", "external_variants", ["account_id"], unique=False)
    op.create_index(
        "ix_external_variants_external_product_id", "external_variants", ["external_product_id"], unique=False
    )


def downgrade() -> None:
    for table in (
        "external_variants",
        "external_products",
        "sync_jobs",
        "commerce_accounts",
        "generation_jobs",
        "generated_images",
        "generations",
        "batches",
        "usage_records",
        "credit_periods",
        "users",
        "teams",
    ):
        op.drop_table(table)
