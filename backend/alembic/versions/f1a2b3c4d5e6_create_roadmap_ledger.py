"""Create roadmap ledger tables.

Revision ID: f1a2b3c4d5e6
Revises:
Create Date: 2026-10-19

"""

from typing import Sequence, Union

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "f1a2b3c4d5e6"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "card_diff",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tid", sa.String(64), nullable=False),
        sa.Column("title", sa.Text(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("category", sa.String(50), nullable=True),
        sa.Column("release_id", sa.String(64), nullable=True),
        sa.Column("release_title", sa.String(255), nullable=True),
        sa.Column("updateDate", sa.BigInteger(), nullable=True),
        sa.Column("thumbnail", sa.Text(), nullable=True),
        sa.Column("addedDate", sa.BigInteger(), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_card_diff"),
    )
    op.create_index("idx_card_diff_tid_added", "card_diff", ["tid", "addedDate"])

    op.create_table(
        "team_diff",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("slug", sa.String(255), nullable=False),
        sa.Column("abbreviation", sa.String(50), nullable=True),
        sa.Column("title", sa.Text(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("startDate", sa.BigInteger(), nullable=True),
        sa.Column("endDate", sa.BigInteger(), nullable=True),
        sa.Column("numberOfDeliverables", sa.Integer(), nullable=True),
        sa.Column("addedDate", sa.BigInteger(), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_team_diff"),
    )
    op.create_index("idx_team_diff_slug_added", "team_diff", ["slug", "addedDate"])

    op.create_table(
        "discipline_diff",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("uuid", sa.String(64), nullable=False),
        sa.Column("title", sa.Text(), nullable=True),
        sa.Column("numberOfMembers", sa.Integer(), nullable=True),
        sa.Column("addedDate", sa.BigInteger(), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_discipline_diff"),
    )
    op.create_index(
        "idx_discipline_diff_uuid_added", "discipline_diff", ["uuid", "addedDate"]
    )

    op.create_table(
        "deliverable_diff",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("uuid", sa.String(64), nullable=False),
        sa.Column("slug", sa.String(255), nullable=True),
        sa.Column("title", sa.Text(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("addedDate", sa.BigInteger(), nullable=False),
        sa.Column("numberOfDisciplines", sa.Integer(), nullable=True),
        sa.Column("numberOfTeams", sa.Integer(), nullable=True),
        sa.Column("totalCount", sa.Integer(), nullable=True),
        sa.Column(
            "card_id",
            sa.Integer(),
            sa.ForeignKey("card_diff.id", name="fk_deliverable_diff_card_id_card_diff"),
            nullable=True,
        ),
        sa.Column("project_ids", sa.String(50), nullable=True),
        sa.Column("startDate", sa.BigInteger(), nullable=True),
        sa.Column("endDate", sa.BigInteger(), nullable=True),
        sa.Column("updateDate", sa.BigInteger(), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_deliverable_diff"),
    )
    op.create_index(
        "idx_deliverable_diff_uuid_added", "deliverable_diff", ["uuid", "addedDate"]
    )
    op.create_index("idx_deliverable_diff_added", "deliverable_diff", ["addedDate"])

    op.create_table(
        "timeAllocation_diff",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("uuid", sa.String(64), nullable=False),
        sa.Column("startDate", sa.BigInteger(), nullable=True),
        sa.Column("endDate", sa.BigInteger(), nullable=True),
        sa.Column("partialTime", sa.Integer(), nullable=True),
        sa.Column(
            "team_id",
            sa.Integer(),
            sa.ForeignKey("team_diff.id", name="fk_timeAllocation_diff_team_id_team_diff"),
            nullable=True,
        ),
        sa.Column(
            "deliverable_id",
            sa.Integer(),
            sa.ForeignKey(
                "deliverable_diff.id",
                name="fk_timeAllocation_diff_deliverable_id_deliverable_diff",
            ),
            nullable=True,
        ),
        sa.Column(
            "discipline_id",
            sa.Integer(),
            sa.ForeignKey(
                "discipline_diff.id",
                name="fk_timeAllocation_diff_discipline_id_discipline_diff",
            ),
            nullable=True,
        ),
        sa.Column("addedDate", sa.BigInteger(), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_timeAllocation_diff"),
    )
    op.create_index(
        "idx_time_allocation_diff_uuid_added",
        "timeAllocation_diff",
        ["uuid", "addedDate"],
    )
    op.create_index(
        "idx_time_allocation_diff_deliverable", "timeAllocation_diff", ["deliverable_id"]
    )

    op.create_table(
        "deliverable_teams",
        sa.Column(
            "deliverable_id",
            sa.Integer(),
            sa.ForeignKey(
                "deliverable_diff.id",
                name="fk_deliverable_teams_deliverable_id_deliverable_diff",
            ),
            nullable=False,
        ),
        sa.Column(
            "team_id",
            sa.Integer(),
            sa.ForeignKey("team_diff.id", name="fk_deliverable_teams_team_id_team_diff"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("deliverable_id", "team_id", name="pk_deliverable_teams"),
    )
    op.create_index("idx_deliverable_teams_team", "deliverable_teams", ["team_id"])

    op.create_table(
        "ingestion_log",
        sa.Column("log_id", sa.Integer(), nullable=False),
        sa.Column("source", sa.String(100), nullable=False),
        sa.Column("observed_at", sa.BigInteger(), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "status",
            sa.Enum(
                "Running",
                "Completed",
                "Failed",
                name="ingestion_status_enum",
                native_enum=False,
                length=20,
            ),
            nullable=False,
        ),
        sa.Column("deliverables_seen", sa.Integer(), nullable=True),
        sa.Column("added", sa.Integer(), nullable=True),
        sa.Column("removed", sa.Integer(), nullable=True),
        sa.Column("updated", sa.Integer(), nullable=True),
        sa.Column("readded", sa.Integer(), nullable=True),
        sa.Column("rows_written", sa.Integer(), nullable=True),
        sa.Column("warnings", sa.Integer(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("log_id", name="pk_ingestion_log"),
    )
    op.create_index("idx_ingestion_log_observed", "ingestion_log", ["observed_at"])
    op.create_index("idx_ingestion_log_status", "ingestion_log", ["status"])


def downgrade() -> None:
    op.drop_index("idx_ingestion_log_status", table_name="ingestion_log")
    op.drop_index("idx_ingestion_log_observed", table_name="ingestion_log")
    op.drop_table("ingestion_log")
    op.drop_index("idx_deliverable_teams_team", table_name="deliverable_teams")
    op.drop_table("deliverable_teams")
    op.drop_index("idx_time_allocation_diff_deliverable", table_name="timeAllocation_diff")
    op.drop_index("idx_time_allocation_diff_uuid_added", table_name="timeAllocation_diff")
    op.drop_table("timeAllocation_diff")
    op.drop_index("idx_deliverable_diff_added", table_name="deliverable_diff")
    op.drop_index("idx_deliverable_diff_uuid_added", table_name="deliverable_diff")
    op.drop_table("deliverable_diff")
    op.drop_index("idx_discipline_diff_uuid_added", table_name="discipline_diff")
    op.drop_table("discipline_diff")
    op.drop_index("idx_team_diff_slug_added", table_name="team_diff")
    op.drop_table("team_diff")
    op.drop_index("idx_card_diff_tid_added", table_name="card_diff")
    op.drop_table("card_diff")
