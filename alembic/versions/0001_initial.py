"""initial schema

Revision ID: 0001_initial
Revises:
Create Date: 2025-03-01 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None

JOB_TYPES = ("FULL_TIME", "PART_TIME", "CONTRACT", "FREELANCE", "INTERNSHIP")
USER_JOB_STATUSES = ("INTERESTED", "DISCARDED", "APPLIED")
TRANSACTION_TYPES = ("CHAT", "JOB_LINK", "DEPOSIT")
TRANSACTION_STATUSES = ("PENDING", "COMPLETED", "FAILED")
MESSAGE_ROLES = ("USER", "AI")


def _enum(values, name, length=16):
    return sa.Enum(*values, name=name, native_enum=False, length=length)


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("world_id_nullifier_hash", sa.String(), nullable=True),
        sa.Column("wallet_address", sa.String(), nullable=True),
        sa.Column("nickname", sa.String(), nullable=False),
        sa.Column("profile_picture", sa.String(), nullable=True),
        sa.Column("contact_info", sa.JSON(), nullable=False),
        sa.Column("professional_info", sa.JSON(), nullable=False),
        sa.Column("preferences", sa.JSON(), nullable=False),
        sa.Column("links_generated", sa.Integer(), nullable=False),
        sa.Column("payments_processed", sa.Integer(), nullable=False),
        sa.Column("rating", sa.Float(), nullable=False),
        sa.Column("review_count", sa.Integer(), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_users_id", "users", ["id"])
    op.create_index("ix_users_world_id_nullifier_hash", "users", ["world_id_nullifier_hash"], unique=True)
    op.create_index("ix_users_wallet_address", "users", ["wallet_address"])

    op.create_table(
        "jobs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("company", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("requirements", sa.JSON(), nullable=False),
        sa.Column("salary_min", sa.Float(), nullable=True),
        sa.Column("salary_max", sa.Float(), nullable=True),
        sa.Column("salary_currency", sa.String(), nullable=False),
        sa.Column("location", sa.String(), nullable=False),
        sa.Column("remote", sa.Boolean(), nullable=False),
        sa.Column("type", _enum(JOB_TYPES, "jobtype"), nullable=False),
        sa.Column("category", sa.String(), nullable=False),
        sa.Column("posted_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False),
        sa.Column("application_url", sa.String(), nullable=True),
        sa.Column("contact_email", sa.String(), nullable=True),
    )
    op.create_index("ix_jobs_id", "jobs", ["id"])
    op.create_index("ix_jobs_category", "jobs", ["category"])

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("type", _enum(TRANSACTION_TYPES, "transactiontype"), nullable=False),
        sa.Column("amount", sa.Float(), nullable=False),
        sa.Column("status", _enum(TRANSACTION_STATUSES, "transactionstatus"), nullable=False),
        sa.Column("reference", sa.String(), nullable=False),
        sa.Column("world_id_transaction_id", sa.String(), nullable=True),
        sa.Column("job_id", sa.Integer(), sa.ForeignKey("jobs.id"), nullable=True),
        sa.Column("chat_id", sa.Integer(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_transactions_id", "transactions", ["id"])
    op.create_index("ix_transactions_user_id", "transactions", ["user_id"])
    op.create_index("ix_transactions_reference", "transactions", ["reference"], unique=True)

    op.create_table(
        "user_jobs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("job_id", sa.Integer(), sa.ForeignKey("jobs.id"), nullable=False),
        sa.Column("status", _enum(USER_JOB_STATUSES, "userjobstatus"), nullable=False),
        sa.Column("generated_link", sa.String(), nullable=True),
        sa.Column("transaction_id", sa.Integer(), sa.ForeignKey("transactions.id"), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "job_id", name="uq_user_jobs_user_job"),
    )
    op.create_index("ix_user_jobs_id", "user_jobs", ["id"])
    op.create_index("ix_user_jobs_user_id", "user_jobs", ["user_id"])
    op.create_index("ix_user_jobs_job_id", "user_jobs", ["job_id"])

    op.create_table(
        "chats",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("job_id", sa.Integer(), sa.ForeignKey("jobs.id"), nullable=True),
        sa.Column("transaction_id", sa.Integer(), sa.ForeignKey("transactions.id"), nullable=False, unique=True),
        *_timestamps(),
    )
    op.create_index("ix_chats_id", "chats", ["id"])
    op.create_index("ix_chats_user_id", "chats", ["user_id"])

    op.create_table(
        "chat_messages",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("chat_id", sa.Integer(), sa.ForeignKey("chats.id"), nullable=False),
        sa.Column("role", _enum(MESSAGE_ROLES, "messagerole", length=8), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_chat_messages_id", "chat_messages", ["id"])
    op.create_index("ix_chat_messages_chat_id", "chat_messages", ["chat_id"])


def downgrade() -> None:
    op.drop_table("chat_messages")
    op.drop_table("chats")
    op.drop_table("user_jobs")
    op.drop_table("transactions")
    op.drop_table("jobs")
    op.drop_table("users")
