"""Docdesk database layer."""

from docdesk.db.connection import DEFAULT_DB_NAME, Database
from docdesk.db.migrations import MIGRATIONS, run_migrations
from docdesk.db.repository import Repository
from docdesk.db.schema import initialize
from docdesk.db.vectors import (
    drop_vec_tables,
    ensure_vec_table,
    list_vec_tables,
    model_to_slug,
    vec_table_name,
)

__all__ = [
    "DEFAULT_DB_NAME",
    "Database",
    "Repository",
    "initialize",
    "run_migrations",
    "MIGRATIONS",
    "drop_vec_tables",
    "ensure_vec_table",
    "list_vec_tables",
    "model_to_slug",
    "vec_table_name",
]
