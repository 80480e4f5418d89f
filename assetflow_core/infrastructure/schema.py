"""
PostgreSQL schema for the reliability pipeline.

Statements are idempotent (``IF NOT EXISTS``) and applied in order by
``ensure_schema()``, which ``scripts/init_db.py`` calls on deploy.

The ``system_incidents_open_signature`` partial unique index is what makes
incident deduplication atomic; the derivative failure upsert relies on
``asset_derivative_failures_live_type``.
"""

from __future__ import annotations

from loguru import logger

from assetflow_core.infrastructure.postgres import get_db_connection

SCHEMA_STATEMENTS = [
    'CREATE EXTENSION IF NOT EXISTS "pgcrypto"',
    """
    CREATE TABLE IF NOT EXISTS assets (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        tenant_id TEXT NOT NULL,
        brand_id TEXT,
        title TEXT,
        status VARCHAR(16) NOT NULL DEFAULT 'visible',
        thumbnail_status VARCHAR(16) NOT NULL DEFAULT 'pending',
        metadata_status VARCHAR(16) NOT NULL DEFAULT 'pending',
        tagging_status VARCHAR(16) NOT NULL DEFAULT 'pending',
        promotion_status VARCHAR(16) NOT NULL DEFAULT 'pending',
        analysis_status VARCHAR(64) DEFAULT 'uploading',
        metadata JSONB,
        failure_count INTEGER NOT NULL DEFAULT 0,
        visibility_override BOOLEAN NOT NULL DEFAULT FALSE,
        version INTEGER NOT NULL DEFAULT 0,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        deleted_at TIMESTAMPTZ
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS assets_stuck_scan
        ON assets (analysis_status, updated_at) WHERE deleted_at IS NULL
    """,
    """
    CREATE TABLE IF NOT EXISTS system_incidents (
        id UUID PRIMARY KEY,
        source_type VARCHAR(16) NOT NULL,
        source_id TEXT,
        tenant_id TEXT,
        severity VARCHAR(16) NOT NULL,
        title TEXT NOT NULL,
        message TEXT,
        metadata JSONB NOT NULL DEFAULT '{}'::jsonb,
        retryable BOOLEAN NOT NULL DEFAULT FALSE,
        requires_support BOOLEAN NOT NULL DEFAULT FALSE,
        auto_resolved BOOLEAN NOT NULL DEFAULT FALSE,
        detected_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        resolved_at TIMESTAMPTZ
    )
    """,
    """
    CREATE UNIQUE INDEX IF NOT EXISTS system_incidents_open_signature
        ON system_incidents (source_type, (COALESCE(source_id, '')), (metadata->>'unique_signature'))
        WHERE resolved_at IS NULL AND (metadata->>'unique_signature') IS NOT NULL
    """,
    """
    CREATE INDEX IF NOT EXISTS system_incidents_open_source
        ON system_incidents (source_type, source_id) WHERE resolved_at IS NULL
    """,
    """
    CREATE TABLE IF NOT EXISTS tickets (
        id UUID PRIMARY KEY,
        tenant_id TEXT,
        type VARCHAR(32) NOT NULL DEFAULT 'internal',
        status VARCHAR(32) NOT NULL DEFAULT 'open',
        severity VARCHAR(4) NOT NULL,
        subject TEXT NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        assigned_team VARCHAR(64) NOT NULL DEFAULT 'engineering',
        source VARCHAR(32) NOT NULL,
        source_type VARCHAR(16),
        source_id TEXT,
        incident_id UUID,
        metadata JSONB NOT NULL DEFAULT '{}'::jsonb,
        created_by TEXT,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS tickets_source
        ON tickets (source_type, source_id, status)
    """,
    """
    CREATE TABLE IF NOT EXISTS upload_sessions (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        tenant_id TEXT,
        asset_id TEXT,
        failure_reason VARCHAR(32),
        failure_count INTEGER NOT NULL DEFAULT 0,
        last_failed_at TIMESTAMPTZ,
        last_succeeded_at TIMESTAMPTZ,
        escalation_ticket_id UUID,
        failure_trace TEXT,
        ai_severity VARCHAR(16),
        ai_summary TEXT,
        ai_recommendation TEXT,
        deleted_at TIMESTAMPTZ
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS downloads (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        tenant_id TEXT,
        asset_id TEXT,
        failure_reason VARCHAR(32),
        failure_count INTEGER NOT NULL DEFAULT 0,
        last_failed_at TIMESTAMPTZ,
        last_succeeded_at TIMESTAMPTZ,
        escalation_ticket_id UUID,
        failure_trace TEXT,
        ai_severity VARCHAR(16),
        ai_summary TEXT,
        ai_recommendation TEXT,
        deleted_at TIMESTAMPTZ
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS asset_derivative_failures (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        tenant_id TEXT,
        asset_id TEXT NOT NULL,
        derivative_type VARCHAR(32) NOT NULL,
        processor VARCHAR(128),
        codec VARCHAR(64),
        failure_reason VARCHAR(32),
        failure_count INTEGER NOT NULL DEFAULT 0,
        last_failed_at TIMESTAMPTZ,
        last_succeeded_at TIMESTAMPTZ,
        escalation_ticket_id UUID,
        failure_trace TEXT,
        ai_severity VARCHAR(16),
        ai_summary TEXT,
        ai_recommendation TEXT,
        deleted_at TIMESTAMPTZ
    )
    """,
    """
    CREATE UNIQUE INDEX IF NOT EXISTS asset_derivative_failures_live_type
        ON asset_derivative_failures (asset_id, derivative_type) WHERE deleted_at IS NULL
    """,
    """
    CREATE TABLE IF NOT EXISTS activity_events (
        id UUID PRIMARY KEY,
        tenant_id TEXT,
        event_type VARCHAR(64) NOT NULL,
        subject_type VARCHAR(32) NOT NULL,
        subject_id TEXT,
        metadata JSONB NOT NULL DEFAULT '{}'::jsonb,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS tenant_plan_features (
        tenant_id TEXT NOT NULL,
        feature VARCHAR(64) NOT NULL,
        enabled BOOLEAN NOT NULL DEFAULT TRUE,
        PRIMARY KEY (tenant_id, feature)
    )
    """,
]


def ensure_schema() -> int:
    """Apply every statement; returns the number applied."""
    with get_db_connection() as conn:
        cursor = conn.cursor()
        for statement in SCHEMA_STATEMENTS:
            cursor.execute(statement)
        conn.commit()
    logger.info(f"Applied {len(SCHEMA_STATEMENTS)} schema statement(s)")
    return len(SCHEMA_STATEMENTS)
