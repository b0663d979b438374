#!/usr/bin/env python3
# CUI // SP-PROPIN
# Controlled by: TradeDesk Portal
# CUI Category: PROPIN (Proprietary Business Information)
# Distribution: D
# POC: TradeDesk System Administrator
"""Initialize the TradeDesk database with all required tables.

Creates tables for:
  - Export Projects (pipeline stage, trade defaults, stage history)
  - Trade Documents (current instances per role, version snapshots)
  - Cross-check Gate (persisted gate runs)
  - Buyer CRM (buyers, interactions)
  - System (audit trail)

Usage:
    python tradedesk/db/init_db.py [--json]
"""

import json
import os
import sqlite3
from datetime import datetime, timezone
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent.parent
DB_PATH = Path(os.environ.get(
    "TRADEDESK_DB_PATH", str(BASE_DIR / "data" / "tradedesk.db")
))


SCHEMA_SQL = """
-- ============================================================
-- BUYER CRM
-- ============================================================

CREATE TABLE IF NOT EXISTS buyers (
    id TEXT PRIMARY KEY,
    company_name TEXT NOT NULL,
    country TEXT NOT NULL,
    contact_name TEXT,
    contact_email TEXT,
    contact_phone TEXT,
    website TEXT,
    channel TEXT,
    buyer_type TEXT,
    notes TEXT,
    deal_stage TEXT NOT NULL DEFAULT 'lead'
        CHECK(deal_stage IN ('lead', 'contacted', 'replied', 'sample',
              'negotiation', 'won', 'lost')),
    rating INTEGER CHECK(rating IS NULL OR (rating BETWEEN 1 AND 5)),
    is_active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_buyers_stage ON buyers(deal_stage);
CREATE INDEX IF NOT EXISTS idx_buyers_country ON buyers(country);

CREATE TABLE IF NOT EXISTS buyer_interactions (
    id TEXT PRIMARY KEY,
    buyer_id TEXT NOT NULL REFERENCES buyers(id),
    interaction_type TEXT NOT NULL
        CHECK(interaction_type IN ('email', 'call', 'meeting', 'sample_sent',
              'quote_sent', 'note')),
    subject TEXT,
    notes TEXT,
    next_action TEXT,
    next_action_date TEXT,
    interaction_date TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_interactions_buyer ON buyer_interactions(buyer_id);

-- ============================================================
-- EXPORT PROJECTS
-- ============================================================

CREATE TABLE IF NOT EXISTS projects (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    buyer_id TEXT REFERENCES buyers(id),
    target_countries TEXT,
    currency TEXT NOT NULL DEFAULT 'USD',
    incoterms TEXT NOT NULL DEFAULT 'FOB',
    payment_terms TEXT NOT NULL DEFAULT 'T/T 30/70',
    language TEXT NOT NULL DEFAULT 'en',
    pipeline_stage TEXT NOT NULL DEFAULT 'first_proposal'
        CHECK(pipeline_stage IN ('first_proposal', 'sample_review',
              'bulk_order', 'shipping', 'completed')),
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_projects_stage ON projects(pipeline_stage);
CREATE INDEX IF NOT EXISTS idx_projects_buyer ON projects(buyer_id);

CREATE TABLE IF NOT EXISTS project_stages (
    id TEXT PRIMARY KEY,
    project_id TEXT NOT NULL REFERENCES projects(id),
    stage TEXT NOT NULL,
    gate_run_id TEXT,
    notes TEXT,
    entered_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_project_stages_project ON project_stages(project_id);

-- ============================================================
-- TRADE DOCUMENTS
-- ============================================================

-- One current instance per (project, doc_key); superseded rows are history
CREATE TABLE IF NOT EXISTS documents (
    id TEXT PRIMARY KEY,
    project_id TEXT NOT NULL REFERENCES projects(id),
    doc_key TEXT NOT NULL,
    title TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'draft'
        CHECK(status IN ('draft', 'editing', 'final')),
    fields TEXT NOT NULL DEFAULT '{}',
    version INTEGER NOT NULL DEFAULT 1,
    is_current INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_documents_project ON documents(project_id, is_current);
CREATE INDEX IF NOT EXISTS idx_documents_key ON documents(project_id, doc_key);

CREATE TABLE IF NOT EXISTS document_versions (
    id TEXT PRIMARY KEY,
    document_id TEXT NOT NULL REFERENCES documents(id),
    version INTEGER NOT NULL,
    fields TEXT NOT NULL,
    reason TEXT,
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    UNIQUE(document_id, version)
);

CREATE INDEX IF NOT EXISTS idx_docversions_doc ON document_versions(document_id);

-- ============================================================
-- CROSS-CHECK GATE
-- ============================================================

CREATE TABLE IF NOT EXISTS gate_runs (
    id TEXT PRIMARY KEY,
    project_id TEXT NOT NULL REFERENCES projects(id),
    trigger TEXT NOT NULL DEFAULT 'manual',
    passed INTEGER NOT NULL DEFAULT 0,
    passed_checks INTEGER NOT NULL DEFAULT 0,
    required_checks INTEGER NOT NULL DEFAULT 0,
    results TEXT,
    error TEXT,
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_gate_runs_project ON gate_runs(project_id, created_at);

-- ============================================================
-- SYSTEM TABLES
-- ============================================================

-- Audit trail (append-only)
CREATE TABLE IF NOT EXISTS audit_trail (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    event_type TEXT NOT NULL,
    actor TEXT,
    action TEXT NOT NULL,
    entity_type TEXT,
    entity_id TEXT,
    details TEXT,
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_audit_event ON audit_trail(event_type);
CREATE INDEX IF NOT EXISTS idx_audit_entity ON audit_trail(entity_type, entity_id);
CREATE INDEX IF NOT EXISTS idx_audit_time ON audit_trail(created_at);
"""


def init_db(db_path=None):
    """Initialize the TradeDesk database."""
    path = db_path or str(DB_PATH)
    db_dir = Path(path).parent
    db_dir.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(str(path))
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")

    conn.executescript(SCHEMA_SQL)
    conn.commit()

    table_count = conn.execute(
        "SELECT COUNT(*) FROM sqlite_master WHERE type='table'"
    ).fetchone()[0]
    index_count = conn.execute(
        "SELECT COUNT(*) FROM sqlite_master WHERE type='index' "
        "AND name NOT LIKE 'sqlite_%'"
    ).fetchone()[0]

    conn.close()

    return {
        "status": "initialized",
        "db_path": str(path),
        "tables": table_count,
        "indexes": index_count,
        "initialized_at": datetime.now(timezone.utc).isoformat(),
    }


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Initialize TradeDesk database")
    parser.add_argument("--json", action="store_true", help="JSON output")
    parser.add_argument("--db-path", help="Override database path")
    args = parser.parse_args()

    result = init_db(db_path=args.db_path)

    if args.json:
        print(json.dumps(result, indent=2))
    else:
        print("TradeDesk database initialized:")
        print(f"  Path:    {result['db_path']}")
        print(f"  Tables:  {result['tables']}")
        print(f"  Indexes: {result['indexes']}")
        print(f"  Time:    {result['initialized_at']}")
