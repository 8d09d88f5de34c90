"""Initial domain ingestion schema

Revision ID: 001_initial
Revises:
Create Date: 2026-10-18

Creates the following tables:
- ingestion_records: One row per ingestion session with stage outputs
- knowledge_graphs: Final knowledge graph and pathways per session
- crawled_documents: Individually stored source items, unique by url
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Create ingestion_records table
    op.create_table(
        "ingestion_records",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("session_id", sa.String(64), nullable=False),
        sa.Column("domain", sa.String(200), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("progress", sa.Float(), nullable=False, server_default="0"),
        sa.Column("current_step", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("success", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("error_kind", sa.String(30), nullable=True),
        sa.Column("analysis", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("collection", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("processing", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column(
            "knowledge_graph", postgresql.JSONB(astext_type=sa.Text()), nullable=True
        ),
        sa.Column(
            "optimization", postgresql.JSONB(astext_type=sa.Text()), nullable=True
        ),
        sa.Column("stats", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("steps", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("requester", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("failed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("interrupted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("processing_time_ms", sa.Integer(), nullable=True),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_ingestion_records_session_id",
        "ingestion_records",
        ["session_id"],
        unique=True,
    )
    op.create_index("ix_ingestion_records_domain", "ingestion_records", ["domain"])
    op.create_index("ix_ingestion_records_status", "ingestion_records", ["status"])
    op.create_index(
        "ix_ingestion_records_completed_at", "ingestion_records", ["completed_at"]
    )

    # Create knowledge_graphs table
    op.create_table(
        "knowledge_graphs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("session_id", sa.String(64), nullable=False),
        sa.Column("domain", sa.String(200), nullable=False),
        sa.Column("nodes", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("edges", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("pathways", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column(
            "learning_sequences",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
        ),
        sa.Column(
            "graph_stats", postgresql.JSONB(astext_type=sa.Text()), nullable=False
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_knowledge_graphs_session_id",
        "knowledge_graphs",
        ["session_id"],
        unique=True,
    )
    op.create_index("ix_knowledge_graphs_domain", "knowledge_graphs", ["domain"])
    op.create_index(
        "ix_knowledge_graphs_created_at", "knowledge_graphs", ["created_at"]
    )

    # Create crawled_documents table
    op.create_table(
        "crawled_documents",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("url", sa.String(2000), nullable=False),
        sa.Column("domain", sa.String(200), nullable=False),
        sa.Column("source_type", sa.String(20), nullable=False),
        sa.Column("title", sa.String(1000), nullable=False),
        sa.Column("content", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("metadata_json", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("relevance_score", sa.Float(), nullable=False, server_default="0"),
        sa.Column(
            "processing_status",
            sa.String(20),
            nullable=False,
            server_default="raw",
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("url", name="uq_crawled_documents_url"),
    )
    op.create_index("ix_crawled_documents_domain", "crawled_documents", ["domain"])
    op.create_index(
        "ix_crawled_documents_source_type", "crawled_documents", ["source_type"]
    )


def downgrade() -> None:
    op.drop_index("ix_crawled_documents_source_type", table_name="crawled_documents")
    op.drop_index("ix_crawled_documents_domain", table_name="crawled_documents")
    op.drop_table("crawled_documents")

    op.drop_index("ix_knowledge_graphs_created_at", table_name="knowledge_graphs")
    op.drop_index("ix_knowledge_graphs_domain", table_name="knowledge_graphs")
    op.drop_index("ix_knowledge_graphs_session_id", table_name="knowledge_graphs")
    op.drop_table("knowledge_graphs")

    op.drop_index("ix_ingestion_records_completed_at", table_name="ingestion_records")
    op.drop_index("ix_ingestion_records_status", table_name="ingestion_records")
    op.drop_index("ix_ingestion_records_domain", table_name="ingestion_records")
    op.drop_index("ix_ingestion_records_session_id", table_name="ingestion_records")
    op.drop_table("ingestion_records")
