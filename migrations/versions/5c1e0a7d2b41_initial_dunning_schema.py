"""initial dunning schema: users, failed payments, dunning logs, email templates, webhook events

Revision ID: 5c1e0a7d2b41
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "5c1e0a7d2b41"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(length=255), nullable=False, unique=True),
        sa.Column("username", sa.String(length=64), nullable=False, unique=True),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("stripe_account_id", sa.String(length=64), nullable=True),
        sa.Column("is_connected", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("stripe_customer_id", sa.String(length=64), nullable=True),
        sa.Column("subscription_status", sa.String(length=20), nullable=False, server_default=sa.text("'trial'")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("ix_users_stripe_account_id", "users", ["stripe_account_id"], unique=True)
    op.create_index("ix_users_stripe_customer_id", "users", ["stripe_customer_id"])

    op.create_table(
        "failed_payments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("stripe_payment_intent_id", sa.String(length=64), nullable=False),
        sa.Column("stripe_customer_id", sa.String(length=64), nullable=True),
        sa.Column("customer_email", sa.String(length=320), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default=sa.text("'failed'")),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column("attempt_count", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("next_retry_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reminders_sent", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("recovered_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="RESTRICT"),
    )
    op.create_index("ix_failed_payments_user_id", "failed_payments", ["user_id"])
    op.create_index("ix_failed_payments_stripe_payment_intent_id", "failed_payments", ["stripe_payment_intent_id"], unique=True)
    op.create_index("ix_failed_payments_status", "failed_payments", ["status"])
    op.create_index("ix_failed_payments_next_retry_at", "failed_payments", ["next_retry_at"])

    op.create_table(
        "dunning_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("failed_payment_id", sa.Integer(), nullable=False),
        sa.Column("email_template", sa.String(length=32), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default=sa.text("'sent'")),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.ForeignKeyConstraint(["failed_payment_id"], ["failed_payments.id"], ondelete="RESTRICT"),
    )
    op.create_index("ix_dunning_logs_failed_payment_id", "dunning_logs", ["failed_payment_id"])

    op.create_table(
        "email_templates",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("type", sa.String(length=32), nullable=False),
        sa.Column("subject", sa.String(length=200), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("is_enabled", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="RESTRICT"),
    )
    op.create_index("ix_email_templates_user_id", "email_templates", ["user_id"])
    op.create_index("ix_email_templates_user_type", "email_templates", ["user_id", "type"])

    op.create_table(
        "webhook_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("stripe_event_id", sa.String(length=255), nullable=False),
        sa.Column("type", sa.String(length=80), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default=sa.text("'received'")),
        sa.Column("deliveries", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("notes", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_webhook_events_stripe_event_id", "webhook_events", ["stripe_event_id"], unique=True)
    op.create_index("ix_webhook_events_type", "webhook_events", ["type"])
    op.create_index("ix_webhook_events_status", "webhook_events", ["status"])


def downgrade():
    op.drop_index("ix_webhook_events_status", table_name="webhook_events")
    op.drop_index("ix_webhook_events_type", table_name="webhook_events")
    op.drop_index("ix_webhook_events_stripe_event_id", table_name="webhook_events")
    op.drop_table("webhook_events")

    op.drop_index("ix_email_templates_user_type", table_name="email_templates")
    op.drop_index("ix_email_templates_user_id", table_name="email_templates")
    op.drop_table("email_templates")

    op.drop_index("ix_dunning_logs_failed_payment_id", table_name="dunning_logs")
    op.drop_table("dunning_logs")

    op.drop_index("ix_failed_payments_next_retry_at", table_name="failed_payments")
    op.drop_index("ix_failed_payments_status", table_name="failed_payments")
    op.drop_index("ix_failed_payments_stripe_payment_intent_id", table_name="failed_payments")
    op.drop_index("ix_failed_payments_user_id", table_name="failed_payments")
    op.drop_table("failed_payments")

    op.drop_index("ix_users_stripe_customer_id", table_name="users")
    op.drop_index("ix_users_stripe_account_id", table_name="users")
    op.drop_table("users")
