#!/usr/bin/env python3
# CUI // SP-PROPIN
# Controlled by: TradeDesk Portal
# CUI Category: PROPIN (Proprietary Business Information)
# Distribution: D
# POC: TradeDesk System Administrator
"""Document Store — persisted trade document instances per export project.

Each project holds at most one *current* instance per document role
(doc_key).  Creating a new instance of a role supersedes the previous one,
which stays in the table with is_current = 0.  Field edits never overwrite
history: the prior field bag is snapshotted into document_versions before
the merge is applied.

Usage:
    python tradedesk/documents/document_store.py --create --project-id P --doc-key DOC_FINAL_PI --json
    python tradedesk/documents/document_store.py --list --project-id P [--history] [--doc-status final] --json
    python tradedesk/documents/document_store.py --get <doc_id> --json
    python tradedesk/documents/document_store.py --update <doc_id> --fields '{"incoterms": "CIF"}' --json
    python tradedesk/documents/document_store.py --finalize <doc_id> --json
    python tradedesk/documents/document_store.py --versions <doc_id> --json
    python tradedesk/documents/document_store.py --restore <doc_id> --version 1 --json
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
from tradedesk.documents.doc_templates import DOC_METADATA, generate_default_fields
from tradedesk.documents.models import VALID_DOC_STATUSES, DocumentInstance

BASE_DIR = Path(__file__).resolve().parent.parent.parent
DB_PATH = Path(os.environ.get(
    "TRADEDESK_DB_PATH", str(BASE_DIR / "data" / "tradedesk.db")
))

logger = logging.getLogger("tradedesk.documents")


def _get_db(db_path=None):
    conn = sqlite3.connect(str(db_path or DB_PATH))
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def _now():
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _dumps(fields):
    return json.dumps(fields, ensure_ascii=False, default=str)


def _row_to_instance(row):
    try:
        fields = json.loads(row["fields"]) if row["fields"] else {}
    except (json.JSONDecodeError, TypeError):
        logger.warning("Unreadable field bag on document %s", row["id"])
        fields = {}
    return DocumentInstance(
        doc_key=row["doc_key"],
        fields=fields,
        id=row["id"],
        project_id=row["project_id"],
        title=row["title"],
        status=row["status"],
        version=row["version"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _project_context(conn, project_id):
    row = conn.execute(
        "SELECT * FROM projects WHERE id = ?", (project_id,)
    ).fetchone()
    if not row:
        return None
    try:
        countries = json.loads(row["target_countries"] or "[]")
    except (json.JSONDecodeError, TypeError):
        countries = []
    return {
        "target_countries": countries,
        "currency": row["currency"],
        "incoterms": row["incoterms"],
        "payment_terms": row["payment_terms"],
        "language": row["language"],
    }


def _write_fields(conn, row, new_fields, reason, actor):
    """Snapshot the current bag of ``row`` and store ``new_fields``.

    Returns the new version number.  The caller commits.
    """
    now = _now()
    conn.execute(
        "INSERT INTO document_versions (id, document_id, version, fields, "
        "reason, created_at) VALUES (?, ?, ?, ?, ?, ?)",
        (str(uuid.uuid4()), row["id"], row["version"], row["fields"],
         reason, now),
    )
    new_version = row["version"] + 1
    conn.execute(
        "UPDATE documents SET fields = ?, version = ?, status = 'editing', "
        "updated_at = ? WHERE id = ?",
        (_dumps(new_fields), new_version, now, row["id"]),
    )
    audit(conn, "document.updated", actor,
          f"Updated {row['doc_key']} to v{new_version}",
          "document", row["id"],
          {"project_id": row["project_id"], "reason": reason,
           "from_version": row["version"], "to_version": new_version})
    return new_version


# ---------------------------------------------------------------------------
# Create / read
# ---------------------------------------------------------------------------

def create_document(project_id, doc_key, fields=None, context=None,
                    company=None, title=None, db_path=None):
    """Create a new current instance of ``doc_key`` for a project.

    When ``fields`` is omitted the default field bag is generated from the
    project's trade defaults (overridden by ``context``) and ``company``.
    """
    if doc_key not in DOC_METADATA:
        return {"status": "error", "message": f"Unknown document key: {doc_key}"}

    conn = _get_db(db_path)
    try:
        project_ctx = _project_context(conn, project_id)
        if project_ctx is None:
            return {"status": "error", "message": f"Project {project_id} not found"}

        if fields is None:
            merged_ctx = dict(project_ctx, **(context or {}))
            fields = generate_default_fields(doc_key, merged_ctx, company)

        now = _now()
        superseded = conn.execute(
            "UPDATE documents SET is_current = 0, updated_at = ? "
            "WHERE project_id = ? AND doc_key = ? AND is_current = 1",
            (now, project_id, doc_key),
        ).rowcount

        doc_id = f"doc-{uuid.uuid4().hex[:12]}"
        doc_title = title or DOC_METADATA[doc_key]["title_kr"]
        conn.execute(
            "INSERT INTO documents (id, project_id, doc_key, title, status, "
            "fields, version, is_current, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, 'draft', ?, 1, 1, ?, ?)",
            (doc_id, project_id, doc_key, doc_title, _dumps(fields), now, now),
        )
        audit(conn, "document.created", "document_store",
              f"Created {doc_key}", "document", doc_id,
              {"project_id": project_id, "superseded": superseded})
        conn.commit()

        row = conn.execute(
            "SELECT * FROM documents WHERE id = ?", (doc_id,)
        ).fetchone()
        logger.info("Created %s %s for project %s", doc_key, doc_id, project_id)
        return {
            "status": "success",
            "document": _row_to_instance(row).to_dict(),
            "superseded": superseded,
        }
    except sqlite3.Error as e:
        logger.error("create_document failed: %s", e)
        return {"status": "error", "message": str(e)}
    finally:
        conn.close()


def get_document(doc_id, db_path=None):
    conn = _get_db(db_path)
    try:
        row = conn.execute(
            "SELECT * FROM documents WHERE id = ?", (doc_id,)
        ).fetchone()
        if not row:
            return {"status": "error", "message": f"Document {doc_id} not found"}
        doc = _row_to_instance(row).to_dict()
        doc["is_current"] = bool(row["is_current"])
        return {"status": "success", "document": doc}
    finally:
        conn.close()


def list_documents(project_id, include_history=False, status=None, db_path=None):
    """List a project's documents, current instances only unless asked."""
    if status and status not in VALID_DOC_STATUSES:
        return {"status": "error", "message": f"Invalid document status: {status}",
                "valid_statuses": list(VALID_DOC_STATUSES)}

    conn = _get_db(db_path)
    try:
        query = "SELECT * FROM documents WHERE project_id = ?"
        params = [project_id]
        if not include_history:
            query += " AND is_current = 1"
        if status:
            query += " AND status = ?"
            params.append(status)
        query += " ORDER BY created_at ASC, rowid ASC"

        documents = []
        for row in conn.execute(query, params).fetchall():
            doc = _row_to_instance(row).to_dict()
            doc["is_current"] = bool(row["is_current"])
            documents.append(doc)
        return {
            "status": "success",
            "project_id": project_id,
            "count": len(documents),
            "documents": documents,
        }
    finally:
        conn.close()


def current_documents(project_id, db_path=None):
    """Current document instances of a project, oldest first.

    This is the snapshot handed to the gate engine.
    """
    conn = _get_db(db_path)
    try:
        rows = conn.execute(
            "SELECT * FROM documents WHERE project_id = ? AND is_current = 1 "
            "ORDER BY created_at ASC, rowid ASC",
            (project_id,),
        ).fetchall()
        return [_row_to_instance(r) for r in rows]
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# Edit / lifecycle
# ---------------------------------------------------------------------------

def update_document_fields(doc_id, fields, reason=None, actor="workbench",
                           db_path=None):
    """Merge ``fields`` into a document's bag, keeping the old bag as a version."""
    if not isinstance(fields, dict):
        return {"status": "error", "message": "fields must be an object"}

    conn = _get_db(db_path)
    try:
        row = conn.execute(
            "SELECT * FROM documents WHERE id = ?", (doc_id,)
        ).fetchone()
        if not row:
            return {"status": "error", "message": f"Document {doc_id} not found"}

        merged = dict(_row_to_instance(row).fields)
        merged.update(fields)
        version = _write_fields(conn, row, merged, reason, actor)
        conn.commit()
        return {
            "status": "success",
            "document_id": doc_id,
            "version": version,
            "updated_fields": sorted(fields.keys()),
        }
    except sqlite3.Error as e:
        logger.error("update_document_fields failed for %s: %s", doc_id, e)
        return {"status": "error", "message": str(e)}
    finally:
        conn.close()


def finalize_document(doc_id, db_path=None):
    conn = _get_db(db_path)
    try:
        row = conn.execute(
            "SELECT id, doc_key, project_id, status FROM documents WHERE id = ?",
            (doc_id,),
        ).fetchone()
        if not row:
            return {"status": "error", "message": f"Document {doc_id} not found"}

        conn.execute(
            "UPDATE documents SET status = 'final', updated_at = ? WHERE id = ?",
            (_now(), doc_id),
        )
        audit(conn, "document.finalized", "document_store",
              f"Finalized {row['doc_key']}", "document", doc_id,
              {"project_id": row["project_id"], "previous_status": row["status"]})
        conn.commit()
        return {"status": "success", "document_id": doc_id, "doc_status": "final"}
    finally:
        conn.close()


def document_versions(doc_id, db_path=None):
    """Version history of a document, oldest snapshot first."""
    conn = _get_db(db_path)
    try:
        row = conn.execute(
            "SELECT id, version FROM documents WHERE id = ?", (doc_id,)
        ).fetchone()
        if not row:
            return {"status": "error", "message": f"Document {doc_id} not found"}

        versions = []
        for v in conn.execute(
            "SELECT version, fields, reason, created_at FROM document_versions "
            "WHERE document_id = ? ORDER BY version ASC",
            (doc_id,),
        ).fetchall():
            entry = dict(v)
            entry["fields"] = json.loads(entry["fields"])
            versions.append(entry)

        return {
            "status": "success",
            "document_id": doc_id,
            "current_version": row["version"],
            "versions": versions,
        }
    finally:
        conn.close()


def restore_version(doc_id, version, db_path=None):
    """Replace a document's bag with an earlier snapshot as a new version."""
    conn = _get_db(db_path)
    try:
        row = conn.execute(
            "SELECT * FROM documents WHERE id = ?", (doc_id,)
        ).fetchone()
        if not row:
            return {"status": "error", "message": f"Document {doc_id} not found"}

        snap = conn.execute(
            "SELECT fields FROM document_versions "
            "WHERE document_id = ? AND version = ?",
            (doc_id, version),
        ).fetchone()
        if not snap:
            return {"status": "error",
                    "message": f"Version {version} not found for {doc_id}"}

        new_version = _write_fields(
            conn, row, json.loads(snap["fields"]),
            f"restore v{version}", "document_store")
        conn.commit()
        return {
            "status": "success",
            "document_id": doc_id,
            "restored_from": version,
            "version": new_version,
        }
    finally:
        conn.close()


def main():
    parser = argparse.ArgumentParser(description="TradeDesk Document Store")
    parser.add_argument("--create", action="store_true")
    parser.add_argument("--project-id")
    parser.add_argument("--doc-key")
    parser.add_argument("--list", action="store_true")
    parser.add_argument("--history", action="store_true",
                        help="Include superseded instances")
    parser.add_argument("--doc-status", choices=VALID_DOC_STATUSES,
                        help="Only list documents in this status")
    parser.add_argument("--get", metavar="DOC_ID")
    parser.add_argument("--update", metavar="DOC_ID")
    parser.add_argument("--fields", help="JSON object of fields to merge")
    parser.add_argument("--reason")
    parser.add_argument("--finalize", metavar="DOC_ID")
    parser.add_argument("--versions", metavar="DOC_ID")
    parser.add_argument("--restore", metavar="DOC_ID")
    parser.add_argument("--version", type=int)
    parser.add_argument("--json", action="store_true")
    args = parser.parse_args()

    if args.create:
        if not args.project_id or not args.doc_key:
            parser.error("--project-id and --doc-key are required with --create")
        result = create_document(args.project_id, args.doc_key)
    elif args.list:
        if not args.project_id:
            parser.error("--project-id is required with --list")
        result = list_documents(args.project_id, include_history=args.history,
                                status=args.doc_status)
    elif args.get:
        result = get_document(args.get)
    elif args.update:
        result = update_document_fields(
            args.update, json.loads(args.fields or "{}"), args.reason, "cli")
    elif args.finalize:
        result = finalize_document(args.finalize)
    elif args.versions:
        result = document_versions(args.versions)
    elif args.restore:
        if args.version is None:
            parser.error("--version is required with --restore")
        result = restore_version(args.restore, args.version)
    else:
        parser.print_help()
        return

    print(json.dumps(result, indent=2, ensure_ascii=False, default=str))


if __name__ == "__main__":
    main()
