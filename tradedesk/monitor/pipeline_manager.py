#!/usr/bin/env python3
# CUI // SP-PROPIN
# Controlled by: TradeDesk Portal
# CUI Category: PROPIN
# Distribution: D
# POC: TradeDesk System Administrator
"""Pipeline Manager — Tracks export projects through the deal lifecycle.

Manages project creation, stage transitions and the status overview.
Transitions listed under gated_transitions in args/gate_config.yaml run the
cross-check gate first and are blocked unless the gate passes.  A gate run
that errors is treated as a failed run.

Pipeline stages (5):
    first_proposal → sample_review → bulk_order → shipping → completed
    (sample_review and bulk_order can loop back one stage)

Usage:
    python tradedesk/monitor/pipeline_manager.py --create --name "US Serum Deal" [--buyer-id B] [--countries US,JP] --json
    python tradedesk/monitor/pipeline_manager.py --list [--stage bulk_order] --json
    python tradedesk/monitor/pipeline_manager.py --get <project_id> --json
    python tradedesk/monitor/pipeline_manager.py --advance <project_id> --to <stage> --json
    python tradedesk/monitor/pipeline_manager.py --status --json
"""

import argparse
import json
import logging
import os
import sqlite3
import uuid
from datetime import datetime, timezone
from pathlib import Path

from tradedesk.audit.audit_logger import audit
from tradedesk.crosscheck.gate_engine import gated_transitions, run_project_gate

BASE_DIR = Path(__file__).resolve().parent.parent.parent
DB_PATH = Path(os.environ.get(
    "TRADEDESK_DB_PATH", str(BASE_DIR / "data" / "tradedesk.db")
))

logger = logging.getLogger("tradedesk.pipeline")

VALID_STAGES = [
    "first_proposal", "sample_review", "bulk_order", "shipping", "completed",
]

# Stage transitions: from → allowed_to
TRANSITIONS = {
    "first_proposal": ["sample_review"],
    "sample_review": ["bulk_order", "first_proposal"],  # Can loop back
    "bulk_order": ["shipping", "sample_review"],
    "shipping": ["completed"],
}


def _now():
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _get_db(db_path=None):
    conn = sqlite3.connect(str(db_path or DB_PATH))
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def _project_dict(row):
    project = dict(row)
    try:
        project["target_countries"] = json.loads(project.get("target_countries") or "[]")
    except (json.JSONDecodeError, TypeError):
        project["target_countries"] = []
    return project


def create_project(name, buyer_id=None, target_countries=None, currency="USD",
                   incoterms="FOB", payment_terms="T/T 30/70", language="en",
                   db_path=None):
    """Create an export project at the first_proposal stage."""
    if not name:
        return {"status": "error", "message": "Project name is required"}

    conn = _get_db(db_path)
    try:
        if buyer_id and not conn.execute(
                "SELECT 1 FROM buyers WHERE id = ?", (buyer_id,)).fetchone():
            return {"status": "error", "message": f"Buyer {buyer_id} not found"}

        project_id = f"prj-{uuid.uuid4().hex[:12]}"
        now = _now()
        countries = [c.upper() for c in (target_countries or [])]
        conn.execute(
            """INSERT INTO projects (id, name, buyer_id, target_countries,
                   currency, incoterms, payment_terms, language,
                   pipeline_stage, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, 'first_proposal', ?, ?)""",
            (project_id, name, buyer_id, json.dumps(countries), currency,
             incoterms, payment_terms, language, now, now),
        )
        conn.execute(
            """INSERT INTO project_stages (id, project_id, stage, notes, entered_at)
               VALUES (?, ?, 'first_proposal', 'created', ?)""",
            (str(uuid.uuid4())[:12], project_id, now),
        )
        audit(conn, "project.created", "pipeline_manager",
              f"Created project {name}", "project", project_id,
              {"buyer_id": buyer_id, "target_countries": countries})
        conn.commit()
        return {
            "status": "success",
            "project_id": project_id,
            "name": name,
            "pipeline_stage": "first_proposal",
        }
    except sqlite3.Error as e:
        return {"status": "error", "message": str(e)}
    finally:
        conn.close()


def get_project(project_id, db_path=None):
    """Project record with stage history and document counts."""
    conn = _get_db(db_path)
    try:
        row = conn.execute(
            "SELECT * FROM projects WHERE id = ?", (project_id,)
        ).fetchone()
        if not row:
            return {"status": "error", "message": f"Project {project_id} not found"}

        project = _project_dict(row)
        project["stage_history"] = [dict(r) for r in conn.execute(
            """SELECT stage, gate_run_id, notes, entered_at FROM project_stages
               WHERE project_id = ? ORDER BY entered_at ASC, rowid ASC""",
            (project_id,)).fetchall()]
        project["documents"] = [dict(r) for r in conn.execute(
            """SELECT id, doc_key, title, status, version FROM documents
               WHERE project_id = ? AND is_current = 1
               ORDER BY created_at ASC, rowid ASC""",
            (project_id,)).fetchall()]
        last_gate = conn.execute(
            """SELECT id, passed, passed_checks, required_checks, error, created_at
               FROM gate_runs WHERE project_id = ?
               ORDER BY created_at DESC, rowid DESC LIMIT 1""",
            (project_id,)).fetchone()
        project["last_gate_run"] = dict(last_gate) if last_gate else None
        project["allowed_transitions"] = TRANSITIONS.get(project["pipeline_stage"], [])
        return {"status": "success", "project": project}
    finally:
        conn.close()


def list_projects(stage=None, buyer_id=None, db_path=None):
    conn = _get_db(db_path)
    try:
        query = "SELECT * FROM projects WHERE 1=1"
        params = []
        if stage:
            query += " AND pipeline_stage = ?"
            params.append(stage)
        if buyer_id:
            query += " AND buyer_id = ?"
            params.append(buyer_id)
        query += " ORDER BY updated_at DESC"
        rows = conn.execute(query, params).fetchall()
        return {
            "status": "success",
            "count": len(rows),
            "projects": [_project_dict(r) for r in rows],
        }
    finally:
        conn.close()


def advance_stage(project_id, to_stage, notes=None, db_path=None):
    """Advance a project to a new pipeline stage.

    Gated transitions run the cross-check gate and return
    ``{"status": "blocked", ...}`` unless it passes.
    It is also ``blocked`` when the stage changed while the gate was running.
    """
    if to_stage not in VALID_STAGES:
        return {"status": "error", "message": f"Invalid stage: {to_stage}"}

    conn = _get_db(db_path)
    try:
        project = conn.execute(
            "SELECT * FROM projects WHERE id = ?", (project_id,)
        ).fetchone()
        if not project:
            return {"status": "error", "message": f"Project {project_id} not found"}

        current = project["pipeline_stage"]
        allowed = TRANSITIONS.get(current, [])
        if to_stage not in allowed:
            return {
                "status": "error",
                "message": f"Cannot transition from '{current}' to '{to_stage}'",
                "allowed_transitions": allowed,
            }
    finally:
        conn.close()

    gate = None
    if (current, to_stage) in gated_transitions():
        gate = run_project_gate(project_id, trigger=f"advance:{to_stage}",
                                actor="pipeline_manager", db_path=db_path)
        if gate.get("status") != "success" or not gate.get("passed"):
            logger.warning("Advance %s %s→%s blocked by gate", project_id,
                           current, to_stage)
            blocked = {
                "status": "blocked",
                "project_id": project_id,
                "current_stage": current,
                "requested_stage": to_stage,
                "gate_run_id": gate.get("run_id"),
            }
            if gate.get("status") == "success":
                blocked["gate"] = {k: gate[k] for k in
                                   ("passed", "passed_checks", "required_checks",
                                    "results")}
                blocked["blocking_checks"] = [
                    r["id"] for r in gate["results"] if r["status"] == "FAIL"]
            else:
                blocked["gate_error"] = gate.get("error") or gate.get("message")
            return blocked

    conn = _get_db(db_path)
    try:
        now = _now()
        # Only move from the stage that was checked above
        cursor = conn.execute(
            "UPDATE projects SET pipeline_stage = ?, updated_at = ? "
            "WHERE id = ? AND pipeline_stage = ?",
            (to_stage, now, project_id, current),
        )
        if cursor.rowcount == 0:
            conn.rollback()
            row = conn.execute(
                "SELECT pipeline_stage FROM projects WHERE id = ?", (project_id,)
            ).fetchone()
            actual = row["pipeline_stage"] if row else None
            logger.warning("Advance %s %s→%s lost to concurrent change (now %s)",
                           project_id, current, to_stage, actual)
            return {
                "status": "blocked",
                "project_id": project_id,
                "current_stage": actual,
                "requested_stage": to_stage,
                "gate_run_id": gate.get("run_id") if gate else None,
                "message": (f"Project stage changed from '{current}' to "
                            f"'{actual}' while advancing"),
            }

        stage_id = str(uuid.uuid4())[:12]
        conn.execute(
            """INSERT INTO project_stages (id, project_id, stage, gate_run_id,
                                           notes, entered_at)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (stage_id, project_id, to_stage,
             gate.get("run_id") if gate else None, notes, now),
        )
        audit(conn, "stage_transition", "pipeline_manager",
              f"advanced from {current} to {to_stage}", "project", project_id,
              {"from": current, "to": to_stage, "notes": notes,
               "gate_run_id": gate.get("run_id") if gate else None})
        conn.commit()

        result = {
            "status": "success",
            "project_id": project_id,
            "previous_stage": current,
            "new_stage": to_stage,
            "stage_record_id": stage_id,
        }
        if gate:
            result["gate_run_id"] = gate["run_id"]
            result["needs_confirmation"] = [
                r["id"] for r in gate["results"]
                if r["status"] == "NEED_USER_CONFIRM"]
        return result
    finally:
        conn.close()


def pipeline_status(db_path=None):
    """Get full pipeline status overview."""
    conn = _get_db(db_path)
    try:
        stages = {s: 0 for s in VALID_STAGES}
        for r in conn.execute(
            "SELECT pipeline_stage, COUNT(*) as cnt FROM projects GROUP BY pipeline_stage"
        ).fetchall():
            stages[r["pipeline_stage"]] = r["cnt"]

        # Latest gate verdict per project still in flight
        blocked = conn.execute(
            """SELECT p.id, p.name, p.pipeline_stage, g.passed_checks,
                      g.required_checks, g.error, g.created_at AS gate_at
               FROM projects p
               JOIN gate_runs g ON g.project_id = p.id
               WHERE p.pipeline_stage NOT IN ('completed')
                 AND g.rowid = (SELECT MAX(rowid) FROM gate_runs
                                WHERE project_id = p.id)
                 AND g.passed = 0
               ORDER BY g.created_at DESC"""
        ).fetchall()

        return {
            "status": "success",
            "pipeline_stages": stages,
            "total_projects": sum(stages.values()),
            "blocked_projects": [dict(b) for b in blocked],
            "timestamp": _now(),
        }
    finally:
        conn.close()


def main():
    parser = argparse.ArgumentParser(description="TradeDesk Pipeline Manager")
    parser.add_argument("--create", action="store_true", help="Create a project")
    parser.add_argument("--name")
    parser.add_argument("--buyer-id")
    parser.add_argument("--countries", default="", help="Comma-separated targets")
    parser.add_argument("--list", action="store_true")
    parser.add_argument("--stage", help="Filter --list by stage")
    parser.add_argument("--get", metavar="PROJECT_ID")
    parser.add_argument("--status", action="store_true", help="Show pipeline status")
    parser.add_argument("--advance", metavar="PROJECT_ID", help="Advance project to new stage")
    parser.add_argument("--to", metavar="STAGE", help="Target stage for advancement")
    parser.add_argument("--notes", help="Notes for stage transition")
    parser.add_argument("--json", action="store_true", help="JSON output")
    args = parser.parse_args()

    if args.create:
        countries = [c.strip() for c in args.countries.split(",") if c.strip()]
        result = create_project(args.name, args.buyer_id, countries)
    elif args.list:
        result = list_projects(stage=args.stage)
    elif args.get:
        result = get_project(args.get)
    elif args.status:
        result = pipeline_status()
    elif args.advance:
        if not args.to:
            result = {"status": "error", "message": "--to <stage> required with --advance"}
        else:
            result = advance_stage(args.advance, args.to, args.notes)
    else:
        parser.print_help()
        return

    print(json.dumps(result, indent=2, ensure_ascii=False, default=str))


if __name__ == "__main__":
    main()
