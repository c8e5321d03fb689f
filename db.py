"""Supabase client and stores. Client is cached via Streamlit."""
import logging

import streamlit as st
from supabase import create_client, Client

from exam_session.config import TABLE_EXAM_SETS, TABLE_SESSIONS, Settings
from exam_session.database import SupabaseRecordStore, SupabaseSnapshotStore


def _env_client() -> Client:
    url, key = Settings.from_env().require_supabase()
    return create_client(url, key)


@st.cache_resource
def get_supabase() -> Client:
    return _env_client()


def get_supabase_uncached() -> Client:
    """For CLI/scripts (no Streamlit context)."""
    return _env_client()


def get_record_store(client: Client | None = None) -> SupabaseRecordStore:
    return SupabaseRecordStore(client or get_supabase())


def get_snapshot_store(client: Client | None = None) -> SupabaseSnapshotStore:
    return SupabaseSnapshotStore(client or get_supabase())


# --- Exam sets ---

def get_exam_sets(active_only: bool = True):
    q = get_supabase().table(TABLE_EXAM_SETS).select("*")
    if active_only:
        q = q.eq("is_active", True)
    return q.order("created_at", desc=True).execute()


# --- Sessions ---

def get_session_history(user_id: str, limit: int = 10):
    """Completed sessions for a user, newest first."""
    try:
        return (
            get_supabase()
            .table(TABLE_SESSIONS)
            .select("*")
            .eq("user_id", user_id)
            .eq("status", "completed")
            .order("completed_at", desc=True)
            .limit(limit)
            .execute()
        )
    except Exception as e:
        logging.getLogger(__name__).error(f"Error fetching session history: {e}")
        raise
