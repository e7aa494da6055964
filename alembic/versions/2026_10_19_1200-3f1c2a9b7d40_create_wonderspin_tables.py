# pyright: reportAttributeAccessIssue=false, reportUndefinedVariable=false
"""create wonderspin tables

Revision ID: 3f1c2a9b7d40
Revises:
Create Date: 2026-10-19 12:00:00.000000

"""

from collections.abc import Sequence

import sqlalchemy as sa
import sqlmodel.sql.sqltypes

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3f1c2a9b7d40"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

ticket_type_enum = sa.Enum("STANDARD", "PREMIUM", name="wonderspintickettype")
asset_type_enum = sa.Enum("ITEM", "RESOURCE", "FOOD", "CURRENCY", name="assettype")
roll_job_status_enum = sa.Enum("PENDING", "RUNNING", "COMPLETED", "FAILED", name="rolljobstatus")
roll_error_code_enum = sa.Enum(
    "INVALID_AMOUNT",
    "USER_NOT_FOUND",
    "INSUFFICIENT_TICKETS",
    "POOL_NOT_FOUND",
    "POOL_INACTIVE",
    "TICKET_MISMATCH",
    "PERSISTENCE_FAILURE",
    "INTERNAL_ERROR",
    name="rollerrorcode",
)
event_type_enum = sa.Enum("WONDERSPIN_ROLL", name="eventtype")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "users",
        *_timestamps(),
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("twitter_id", sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column("name", sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column("x_cookies", sa.Integer(), nullable=False),
        sa.Column("diamonds", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_users_id"), "users", ["id"], unique=False)
    op.create_index(op.f("ix_users_twitter_id"), "users", ["twitter_id"], unique=True)

    op.create_table(
        "wonderspins",
        *_timestamps(),
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sqlmodel.sql.sqltypes.AutoString(length=100), nullable=False),
        sa.Column("ticket_type", ticket_type_enum, nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False),
        sa.Column("crest_threshold", sa.Integer(), nullable=True),
        sa.Column("surge_threshold", sa.Integer(), nullable=True),
        sa.Column("blessing_threshold", sa.Integer(), nullable=True),
        sa.Column("peak_threshold", sa.Integer(), nullable=True),
        sa.Column("asset_data", sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_wonderspins_id"), "wonderspins", ["id"], unique=False)
    op.create_index(op.f("ix_wonderspins_name"), "wonderspins", ["name"], unique=True)

    op.create_table(
        "inventories",
        *_timestamps(),
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("asset_type", asset_type_enum, nullable=False),
        sa.Column("asset", sqlmodel.sql.sqltypes.AutoString(length=100), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("total_amount_consumed", sa.Integer(), nullable=False),
        sa.Column("weekly_amount_consumed", sa.Integer(), nullable=False),
        sa.Column("mintable_amount", sa.Integer(), nullable=False),
        sa.Column("origin", sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "asset_type", "asset", name="uq_inventories_user_asset"),
    )
    op.create_index(op.f("ix_inventories_id"), "inventories", ["id"], unique=False)
    op.create_index(op.f("ix_inventories_user_id"), "inventories", ["user_id"], unique=False)
    op.create_index(
        op.f("ix_inventories_asset_type"), "inventories", ["asset_type"], unique=False
    )

    op.create_table(
        "wonderspin_pity",
        *_timestamps(),
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("wonderspin_id", sa.Integer(), nullable=False),
        sa.Column("total_rolls", sa.Integer(), nullable=False),
        sa.Column("rolls_until_crest", sa.Integer(), nullable=True),
        sa.Column("rolls_until_surge", sa.Integer(), nullable=True),
        sa.Column("current_surge_step", sa.Integer(), nullable=False),
        sa.Column("rolls_until_blessing", sa.Integer(), nullable=True),
        sa.Column("rolls_until_peak", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["wonderspin_id"], ["wonderspins.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "wonderspin_id", name="uq_wonderspin_pity_user"),
    )
    op.create_index(op.f("ix_wonderspin_pity_id"), "wonderspin_pity", ["id"], unique=False)
    op.create_index(
        op.f("ix_wonderspin_pity_user_id"), "wonderspin_pity", ["user_id"], unique=False
    )
    op.create_index(
        op.f("ix_wonderspin_pity_wonderspin_id"),
        "wonderspin_pity",
        ["wonderspin_id"],
        unique=False,
    )

    op.create_table(
        "roll_jobs",
        *_timestamps(),
        sa.Column("id", sqlmodel.sql.sqltypes.AutoString(length=32), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("wonderspin", sqlmodel.sql.sqltypes.AutoString(length=100), nullable=False),
        sa.Column("ticket_type", ticket_type_enum, nullable=False),
        sa.Column("roll_count", sa.Integer(), nullable=False),
        sa.Column("lock_key", sqlmodel.sql.sqltypes.AutoString(length=150), nullable=False),
        sa.Column("status", roll_job_status_enum, nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False),
        sa.Column("locked_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error_code", roll_error_code_enum, nullable=True),
        sa.Column("error_message", sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column("result", sa.JSON(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_roll_jobs_user_id"), "roll_jobs", ["user_id"], unique=False)
    op.create_index(op.f("ix_roll_jobs_lock_key"), "roll_jobs", ["lock_key"], unique=False)
    op.create_index(op.f("ix_roll_jobs_status"), "roll_jobs", ["status"], unique=False)

    op.create_table(
        "event_logs",
        *_timestamps(),
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("event_type", event_type_enum, nullable=False),
        sa.Column("roll_job_id", sqlmodel.sql.sqltypes.AutoString(length=32), nullable=True),
        sa.Column("context", sa.JSON(), nullable=True),
        sa.ForeignKeyConstraint(["roll_job_id"], ["roll_jobs.id"]),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_event_logs_id"), "event_logs", ["id"], unique=False)
    op.create_index(op.f("ix_event_logs_user_id"), "event_logs", ["user_id"], unique=False)
    op.create_index(
        op.f("ix_event_logs_event_type"), "event_logs", ["event_type"], unique=False
    )
    op.create_index(
        op.f("ix_event_logs_roll_job_id"), "event_logs", ["roll_job_id"], unique=False
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index(op.f("ix_event_logs_roll_job_id"), table_name="event_logs")
    op.drop_index(op.f("ix_event_logs_event_type"), table_name="event_logs")
    op.drop_index(op.f("ix_event_logs_user_id"), table_name="event_logs")
    op.drop_index(op.f("ix_event_logs_id"), table_name="event_logs")
    op.drop_table("event_logs")

    op.drop_index(op.f("ix_roll_jobs_status"), table_name="roll_jobs")
    op.drop_index(op.f("ix_roll_jobs_lock_key"), table_name="roll_jobs")
    op.drop_index(op.f("ix_roll_jobs_user_id"), table_name="roll_jobs")
    op.drop_table("roll_jobs")

    op.drop_index(op.f("ix_wonderspin_pity_wonderspin_id"), table_name="wonderspin_pity")
    op.drop_index(op.f("ix_wonderspin_pity_user_id"), table_name="wonderspin_pity")
    op.drop_index(op.f("ix_wonderspin_pity_id"), table_name="wonderspin_pity")
    op.drop_table("wonderspin_pity")

    op.drop_index(op.f("ix_inventories_asset_type"), table_name="inventories")
    op.drop_index(op.f("ix_inventories_user_id"), table_name="inventories")
    op.drop_index(op.f("ix_inventories_id"), table_name="inventories")
    op.drop_table("inventories")

    op.drop_index(op.f("ix_wonderspins_name"), table_name="wonderspins")
    op.drop_index(op.f("ix_wonderspins_id"), table_name="wonderspins")
    op.drop_table("wonderspins")

    op.drop_index(op.f("ix_users_twitter_id"), table_name="users")
    op.drop_index(op.f("ix_users_id"), table_name="users")
    op.drop_table("users")

    bind = op.get_bind()
    for enum in (
        event_type_enum,
        roll_error_code_enum,
        roll_job_status_enum,
        asset_type_enum,
        ticket_type_enum,
    ):
        enum.drop(bind, checkfirst=True)
