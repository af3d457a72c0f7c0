"""initial ledger schema

Revision ID: 202610190900
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202610190900"
down_revision = None
branch_labels = None
depends_on = None


TRANSACTION_TYPE = sa.Enum("income", "expense", name="transactiontype")


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade():
    op.create_table(
        "clients",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("email", sa.String(length=200)),
        sa.Column("phone", sa.String(length=40)),
        sa.Column("notes", sa.Text()),
        *_timestamps(),
    )
    op.create_index("ix_clients_user_name", "clients", ["user_id", "name"])

    op.create_table(
        "projects",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column(
            "client_id",
            sa.Integer(),
            sa.ForeignKey("clients.id", ondelete="SET NULL"),
        ),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("value_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "status",
            sa.Enum("in_progress", "completed", "cancelled", name="projectstatus"),
            nullable=False,
        ),
        sa.Column("deadline", sa.Date()),
        *_timestamps(),
        sa.CheckConstraint("value_cents >= 0", name="ck_projects_value_positive"),
    )
    op.create_index("ix_projects_user_status", "projects", ["user_id", "status"])

    op.create_table(
        "scheduled_transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("description", sa.String(length=200), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("type", TRANSACTION_TYPE, nullable=False),
        sa.Column("category", sa.String(length=60), nullable=False),
        sa.Column("scheduled_at", sa.DateTime(), nullable=False),
        sa.Column(
            "status",
            sa.Enum("scheduled", "paid", name="scheduledstatus"),
            nullable=False,
        ),
        *_timestamps(),
        sa.CheckConstraint("amount_cents >= 0", name="ck_scheduled_amount_positive"),
    )
    op.create_index(
        "ix_scheduled_user_at", "scheduled_transactions", ["user_id", "scheduled_at"]
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("description", sa.String(length=200), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("type", TRANSACTION_TYPE, nullable=False),
        sa.Column("category", sa.String(length=60), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column(
            "origin_project_id",
            sa.Integer(),
            sa.ForeignKey("projects.id", ondelete="SET NULL"),
        ),
        sa.Column(
            "origin_scheduled_id",
            sa.Integer(),
            sa.ForeignKey("scheduled_transactions.id", ondelete="SET NULL"),
        ),
        sa.Column("idempotency_key", sa.String(length=80)),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "idempotency_key", name="uq_txn_idempotency"),
        sa.CheckConstraint(
            "amount_cents >= 0", name="ck_transactions_amount_positive"
        ),
    )
    op.create_index("ix_transactions_user_date", "transactions", ["user_id", "date"])
    op.create_index(
        "ix_transactions_user_type_date", "transactions", ["user_id", "type", "date"]
    )
    op.create_index(
        "ix_transactions_origin_project", "transactions", ["origin_project_id"]
    )

    op.create_table(
        "ledger_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column(
            "event_type",
            sa.Enum(
                "project_completed",
                "project_cancelled",
                "scheduled_paid",
                name="ledgereventtype",
            ),
            nullable=False,
        ),
        sa.Column("source_id", sa.Integer(), nullable=False),
        sa.Column("idempotency_key", sa.String(length=80), nullable=False),
        sa.Column(
            "status",
            sa.Enum("pending", "applied", "failed", name="ledgereventstatus"),
            nullable=False,
        ),
        sa.Column("effective_date", sa.Date(), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text()),
        sa.Column("applied_at", sa.DateTime()),
        *_timestamps(),
    )
    op.create_index(
        "ix_ledger_events_user_status", "ledger_events", ["user_id", "status", "id"]
    )


def downgrade():
    op.drop_index("ix_ledger_events_user_status", table_name="ledger_events")
    op.drop_table("ledger_events")
    op.drop_index("ix_transactions_origin_project", table_name="transactions")
    op.drop_index("ix_transactions_user_type_date", table_name="transactions")
    op.drop_index("ix_transactions_user_date", table_name="transactions")
    op.drop_table("transactions")
    op.drop_index("ix_scheduled_user_at", table_name="scheduled_transactions")
    op.drop_table("scheduled_transactions")
    op.drop_index("ix_projects_user_status", table_name="projects")
    op.drop_table("projects")
    op.drop_index("ix_clients_user_name", table_name="clients")
    op.drop_table("clients")
