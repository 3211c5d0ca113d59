"""Per-model sqlite-vec virtual table management.

Each embedding model gets its own pair of tables so vectors from different
providers are never mixed:

    vec_chunks_<slug>   document chunk embeddings (rowid = chunks.id)
    vec_web_<slug>      web research chunk embeddings (rowid = web_chunks.id)
"""

from __future__ import annotations

import re
import sqlite3

VEC_KINDS = ("chunks", "web")


def model_to_slug(model: str) -> str:
    """Convert a provider/model string to a valid table name suffix.

    Examples:
        "openai/text-embedding-3-small" -> "openai_text_embedding_3_small"
        "sentence-transformers/all-MiniLM-L6-v2" -> "sentence_transformers_all_minilm_l6_v2"
    """
    return re.sub(r"[^a-z0-9]", "_", model.lower())


def vec_table_name(model_slug: str, kind: str = "chunks") -> str:
    """Return the full vec table name for a model slug and collection kind."""
    if kind not in VEC_KINDS:
        raise ValueError(f"Unknown vec table kind '{kind}'")
    return f"vec_{kind}_{model_slug}"


def ensure_vec_table(
    conn: sqlite3.Connection, model_slug: str, dimensions: int, kind: str = "chunks"
) -> str:
    """Create the vec0 virtual table for *model_slug* if it doesn't already exist.

    Args:
        conn: Active database connection (sqlite-vec must be loaded).
        model_slug: Sanitized model identifier (use model_to_slug() to generate).
        dimensions: Embedding vector dimensions.
        kind: ``chunks`` for project documents, ``web`` for the web cache.

    Returns:
        The table name.
    """
    if not re.fullmatch(r"[a-z0-9_]+", model_slug):
        raise ValueError(
            f"Invalid model_slug '{model_slug}' — use model_to_slug() to sanitize."
        )
    if dimensions < 1:
        raise ValueError(f"dimensions must be >= 1, got {dimensions}")

    table = vec_table_name(model_slug, kind)
    existing = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name=?", (table,)
    ).fetchone()

    if existing is None:
        conn.execute(
            f"CREATE VIRTUAL TABLE {table} USING vec0(embedding float[{dimensions}])"
        )
        conn.commit()

    return table


def list_vec_tables(conn: sqlite3.Connection, kind: str | None = None) -> list[str]:
    """Return the names of all vec tables, optionally limited to one *kind*."""
    pattern = f"vec_{kind}_%" if kind else "vec_%"
    rows = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name LIKE ? "
        "AND sql LIKE '%vec0%'",
        (pattern,),
    ).fetchall()
    return [r[0] for r in rows]


def drop_vec_tables(conn: sqlite3.Connection) -> list[str]:
    """Drop every vec table. Returns the dropped table names."""
    dropped = list_vec_tables(conn)
    for table in dropped:
        conn.execute(f"DROP TABLE IF EXISTS [{table}]")
    conn.commit()
    return dropped
