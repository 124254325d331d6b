"""Initial schema: job queue and agent execution log

Revision ID: 001
Revises:
Create Date: 2024-01-01 00:00:00.000000

"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSON_TYPE = sa.JSON().with_variant(JSONB(), "postgresql")


def upgrade() -> None:
    # Check if tables already exist and skip if so
    conn = op.get_bind()
    inspector = sa.inspect(conn)
    existing_tables = inspector.get_table_names()

    if "job_queue" in existing_tables:
        # Tables already exist, skip migration
        return

    # Create job_queue table
    op.create_table(
        "job_queue",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column("job_type", sa.Text, nullable=False),
        sa.Column("payload", JSON_TYPE, nullable=False),
        sa.Column("owner_id", sa.Text, nullable=False),
        sa.Column("status", sa.Text, nullable=False, server_default="pending"),
        sa.Column("retry_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("max_retries", sa.Integer, nullable=False, server_default="3"),
        sa.Column("error_message", sa.Text),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("processed_at", sa.DateTime(timezone=True)),
        sa.Column("completed_at", sa.DateTime(timezone=True)),
        sa.CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed')",
            name="ck_job_queue_status",
        ),
        sa.CheckConstraint("retry_count <= max_retries", name="ck_job_queue_retry_budget"),
    )
    op.create_index("idx_job_queue_status", "job_queue", ["status", "created_at"])
    op.create_index("idx_job_queue_type", "job_queue", ["job_type"])
    op.create_index("idx_job_queue_owner", "job_queue", ["owner_id"])

    # Create agent_executions table
    op.create_table(
        "agent_executions",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column("agent_name", sa.Text, nullable=False),
        sa.Column("agent_version", sa.Text, nullable=False),
        sa.Column("owner_id", sa.Text, nullable=False),
        sa.Column("project_id", sa.Text),
        sa.Column("job_id", sa.Text),
        sa.Column("success", sa.Boolean, nullable=False),
        sa.Column("processing_time_ms", sa.Float, nullable=False, server_default="0"),
        sa.Column("credits_used", sa.Float, nullable=False, server_default="0"),
        sa.Column("error_code", sa.Text),
        sa.Column("error_message", sa.Text),
        sa.Column("extra", JSON_TYPE),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("idx_agent_executions_agent", "agent_executions", ["agent_name", "created_at"])
    op.create_index("idx_agent_executions_owner", "agent_executions", ["owner_id"])


def downgrade() -> None:
    op.drop_table("agent_executions")
    op.drop_table("job_queue")
