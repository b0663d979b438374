#!/usr/bin/env python3
# CUI // SP-PROPIN
"""Audit Logger — append-only audit trail writer for TradeDesk.

Every mutating operation (document edits, gate runs, stage transitions,
CRM updates, unify actions) records who did what to which entity.
No UPDATE/DELETE operations are ever issued against audit_trail.

Usage:
    python tradedesk/audit/audit_logger.py \
        --event-type "document.updated" \
        --actor "workbench" \
        --action "Edited PI line items" \
        --entity-type document --entity-id "DOC-123" \
        --json
    python tradedesk/audit/audit_logger.py --list [--entity-id PRJ-1] [--limit 50] --json
"""

import argparse
import json
import os
import sqlite3
from datetime import datetime, timezone
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent.parent
DB_PATH = Path(os.environ.get(
    "TRADEDESK_DB_PATH", str(BASE_DIR / "data" / "tradedesk.db")
))


def _now():
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def audit(conn, event_type, actor, action, entity_type=None, entity_id=None,
          details=None):
    """Write an audit record on an open connection.

    The caller owns the transaction; the row is committed together with
    the change it describes.
    """
    conn.execute(
        "INSERT INTO audit_trail (event_type, actor, action, entity_type, "
        "entity_id, details, created_at) VALUES (?, ?, ?, ?, ?, ?, ?)",
        (
            event_type,
            actor,
            action,
            entity_type,
            entity_id,
            json.dumps(details, default=str) if details else None,
            _now(),
        ),
    )


def log_event(event_type: str, actor: str, action: str,
              entity_type: str = None, entity_id: str = None,
              details: dict = None, db_path=None) -> dict:
    """Append a standalone event to the audit trail. Returns the entry."""
    conn = sqlite3.connect(str(db_path or DB_PATH))
    try:
        audit(conn, event_type, actor, action, entity_type, entity_id, details)
        conn.commit()
    finally:
        conn.close()

    return {
        "event_type": event_type,
        "actor": actor,
        "action": action,
        "entity_type": entity_type,
        "entity_id": entity_id,
        "details": details or {},
        "logged_at": _now(),
    }


def list_events(entity_id=None, event_type=None, limit=50, db_path=None):
    """Return the most recent audit records, newest first."""
    conn = sqlite3.connect(str(db_path or DB_PATH))
    conn.row_factory = sqlite3.Row
    try:
        query = "SELECT * FROM audit_trail WHERE 1=1"
        params = []
        if entity_id:
            query += " AND entity_id = ?"
            params.append(entity_id)
        if event_type:
            query += " AND event_type = ?"
            params.append(event_type)
        query += " ORDER BY id DESC LIMIT ?"
        params.append(limit)

        events = []
        for row in conn.execute(query, params).fetchall():
            event = dict(row)
            if event.get("details"):
                try:
                    event["details"] = json.loads(event["details"])
                except (json.JSONDecodeError, TypeError):
                    pass
            events.append(event)
        return {"status": "success", "count": len(events), "events": events}
    finally:
        conn.close()


def main():
    parser = argparse.ArgumentParser(description="TradeDesk Audit Logger")
    parser.add_argument("--list", action="store_true", help="List recent events")
    parser.add_argument("--event-type")
    parser.add_argument("--actor", default="cli")
    parser.add_argument("--action")
    parser.add_argument("--entity-type")
    parser.add_argument("--entity-id")
    parser.add_argument("--limit", type=int, default=50)
    parser.add_argument("--json", action="store_true")
    args = parser.parse_args()

    if args.list:
        result = list_events(args.entity_id, args.event_type, args.limit)
    else:
        if not args.event_type or not args.action:
            parser.error("--event-type and --action are required to log an event")
        result = log_event(args.event_type, args.actor, args.action,
                           args.entity_type, args.entity_id)

    if args.json:
        print(json.dumps(result, indent=2))
    elif args.list:
        for e in result["events"]:
            print(f"{e['created_at']}  [{e['event_type']}] {e['action']}")
    else:
        print(f"Logged: [{result['event_type']}] {result['action']}")


if __name__ == "__main__":
    main()
