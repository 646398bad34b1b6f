"""Supabase client factory and dashboard queries. Client is cached via Streamlit."""
import logging
import os
from collections import Counter
from typing import Optional

import streamlit as st
from dotenv import load_dotenv
from supabase import create_client, Client

from exam_engine.database import DatabaseClient

load_dotenv()


def _env_client() -> Client:
    url = os.environ.get("SUPABASE_URL")
    key = os.environ.get("SUPABASE_KEY")
    if not url or not key:
        raise ValueError("SUPABASE_URL and SUPABASE_KEY must be set")
    return create_client(url, key)


@st.cache_resource
def get_supabase() -> Client:
    return _env_client()


def get_supabase_uncached() -> Client:
    """For CLI/scripts (no Streamlit context)."""
    return _env_client()


def get_database() -> DatabaseClient:
    """Exam engine collaborators on top of the cached client."""
    return DatabaseClient(get_supabase())


def upsert_questions_bulk(client: Client, rows: list[dict], chunk_size: int = 200):
    """Bulk upsert into questions. Rows must include 'id' (uuid). Dedupes by id so no chunk has duplicates (avoids Postgres ON CONFLICT error)."""
    n_before = len(rows)
    by_id = {r["id"]: r for r in rows}
    rows = list(by_id.values())
    log = logging.getLogger(__name__)
    if len(rows) < n_before:
        log.info("Deduped questions by id: %d -> %d", n_before, len(rows))
    n_chunks = (len(rows) + chunk_size - 1) // chunk_size
    for i in range(0, len(rows), chunk_size):
        chunk = rows[i : i + chunk_size]
        chunk_num = i // chunk_size + 1
        log.info("Upserting chunk %d/%d (%d rows)", chunk_num, n_chunks, len(chunk))
        client.table("questions").upsert(chunk, on_conflict="id").execute()


def delete_questions_by_subject(client: Client, class_tag: str, subject: str):
    """Delete one class's question bank for a subject (importer --replace)."""
    client.table("questions").delete().eq("class", class_tag).eq("subject", subject).execute()


def _fetch_all(query_factory, page_size: int = 1000) -> list[dict]:
    """Page through a select with .range(); Supabase caps a single response."""
    all_rows = []
    offset = 0
    while True:
        r = query_factory().range(offset, offset + page_size - 1).execute()
        data = r.data or []
        if not data:
            break
        all_rows.extend(data)
        if len(data) < page_size:
            break
        offset += page_size
    return all_rows


# --- Questions ---

def get_question_counts(class_tag: Optional[str] = None, client: Optional[Client] = None) -> dict:
    """Returns {subject: count} for one class, or all classes if None."""
    client = client or get_supabase()
    counts = {}
    try:
        def query():
            q = client.table("questions").select("class", "subject")
            if class_tag:
                q = q.eq("class", class_tag)
            return q

        rows = _fetch_all(query)
        counts = dict(Counter(row.get("subject") or "(blank)" for row in rows))
    except Exception as e:
        logging.getLogger(__name__).error(f"Error getting question counts: {e}")
    return counts


# --- Students ---

def get_students_by_class(class_tag: str, client: Optional[Client] = None) -> list[dict]:
    client = client or get_supabase()
    try:
        return _fetch_all(
            lambda: client.table("students").select("id", "full_name", "class", "has_submitted")
            .eq("class", class_tag)
            .order("full_name")
        )
    except Exception as e:
        logging.getLogger(__name__).error(f"Error getting students for {class_tag}: {e}")
        return []


def reset_student_submission(student_id: str, client: Optional[Client] = None):
    """Allow a retake: clear has_submitted (results already stored are kept)."""
    client = client or get_supabase()
    return client.table("students").update({"has_submitted": False}).eq("id", student_id).execute()


# --- Results ---

def get_results_by_class(class_tag: str, subject: Optional[str] = None, client: Optional[Client] = None) -> list[dict]:
    client = client or get_supabase()
    try:
        def query():
            q = client.table("exam_results").select("*").eq("class", class_tag)
            if subject:
                q = q.eq("subject", subject)
            return q.order("timestamp", desc=True)

        return _fetch_all(query)
    except Exception as e:
        logging.getLogger(__name__).error(f"Error getting results for {class_tag}: {e}")
        return []
