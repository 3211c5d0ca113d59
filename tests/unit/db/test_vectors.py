"""Tests for per-model sqlite-vec virtual tables."""

from __future__ import annotations

import json

import pytest
import sqlite_vec

from docdesk.db.vectors import (
    drop_vec_tables,
    ensure_vec_table,
    list_vec_tables,
    model_to_slug,
    vec_table_name,
)


# --- model_to_slug ---

@pytest.mark.parametrize("model,expected", [
    ("openai/text-embedding-3-small", "openai_text_embedding_3_small"),
    ("local/hashing-384", "local_hashing_384"),
    ("cohere/embed-english-v3.0", "cohere_embed_english_v3_0"),
    ("ollama/nomic-embed-text", "ollama_nomic_embed_text"),
])
def test_model_to_slug(model, expected):
    assert model_to_slug(model) == expected


def test_vec_table_name_per_kind():
    slug = model_to_slug("local/hashing-384")
    assert vec_table_name(slug) == "vec_chunks_local_hashing_384"
    assert vec_table_name(slug, "web") == "vec_web_local_hashing_384"


def test_vec_table_name_rejects_unknown_kind():
    with pytest.raises(ValueError, match="kind"):
        vec_table_name("x", "images")


# --- ensure_vec_table ---

def test_ensure_vec_table_creates_table(tmp_db):
    table = ensure_vec_table(tmp_db, model_to_slug("local/hashing-384"), dimensions=384)
    assert table == "vec_chunks_local_hashing_384"
    assert table in list_vec_tables(tmp_db)


def test_ensure_vec_table_idempotent(tmp_db):
    slug = model_to_slug("local/hashing-384")
    assert ensure_vec_table(tmp_db, slug, 384) == ensure_vec_table(tmp_db, slug, 384)
    assert len(list_vec_tables(tmp_db)) == 1


def test_ensure_vec_table_separates_models_and_kinds(tmp_db):
    ensure_vec_table(tmp_db, model_to_slug("local/hashing-384"), 384)
    ensure_vec_table(tmp_db, model_to_slug("local/hashing-384"), 384, kind="web")
    ensure_vec_table(tmp_db, model_to_slug("openai/text-embedding-3-small"), 1536)
    assert len(list_vec_tables(tmp_db)) == 3
    assert list_vec_tables(tmp_db, kind="web") == ["vec_web_local_hashing_384"]


def test_ensure_vec_table_rejects_unsanitized_slug(tmp_db):
    with pytest.raises(ValueError, match="model_to_slug"):
        ensure_vec_table(tmp_db, "bad slug; DROP TABLE files", 4)


def test_ensure_vec_table_rejects_zero_dimensions(tmp_db):
    with pytest.raises(ValueError, match="dimensions"):
        ensure_vec_table(tmp_db, "ok", 0)


def test_cosine_distance_in_sql(tmp_db):
    table = ensure_vec_table(tmp_db, "tiny", 4)
    for rowid, vector in ((1, [1.0, 0.0, 0.0, 0.0]), (2, [0.0, 1.0, 0.0, 0.0])):
        tmp_db.execute(
            f"INSERT INTO {table}(rowid, embedding) VALUES (?, ?)",
            (rowid, sqlite_vec.serialize_float32(vector)),
        )
    rows = tmp_db.execute(
        f"SELECT rowid, vec_distance_cosine(embedding, ?) FROM {table} ORDER BY 2",
        (json.dumps([1.0, 0.0, 0.0, 0.0]),),
    ).fetchall()
    assert [r[0] for r in rows] == [1, 2]
    assert rows[0][1] == pytest.approx(0.0)
    assert rows[1][1] == pytest.approx(1.0)


def test_drop_vec_tables(tmp_db):
    ensure_vec_table(tmp_db, "a", 4)
    ensure_vec_table(tmp_db, "a", 4, kind="web")
    dropped = drop_vec_tables(tmp_db)
    assert sorted(dropped) == ["vec_chunks_a", "vec_web_a"]
    assert list_vec_tables(tmp_db) == []
