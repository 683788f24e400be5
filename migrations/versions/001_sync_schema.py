"""Sync tables: session_status, chats, messages (SQL-only).

Revision ID: 001_sync_schema
Revises:
Create Date: 2026-10-18
"""

from __future__ import annotations

from pathlib import Path

from alembic import op

revision = "001_sync_schema"
down_revision = None
branch_labels = None
depends_on = None

_SQL_DIR = Path(__file__).resolve().parents[1] / "sql"


def upgrade() -> None:
    sql = (_SQL_DIR / "001_sync_schema.sql").read_text(encoding="utf-8")
    op.get_bind().exec_driver_sql(sql)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS messages")
    op.execute("DROP TABLE IF EXISTS chats")
    op.execute("DROP TABLE IF EXISTS session_status")
