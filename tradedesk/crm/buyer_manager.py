#!/usr/bin/env python3
# CUI // SP-PROPIN
# Controlled by: TradeDesk Portal
# CUI Category: PROPIN
"""Buyer CRM.

Manages overseas buyers (importers, distributors, retailers, market sellers)
with deal-stage tracking and an interaction log.

Deal stages:
    lead → contacted → replied → sample → negotiation → won | lost

Usage:
    python tradedesk/crm/buyer_manager.py --list [--stage sample] [--country US] [--json]
    python tradedesk/crm/buyer_manager.py --get <id> [--json]
    python tradedesk/crm/buyer_manager.py --add --company "Glow Imports LLC" --country US [--email a@b.com] [--json]
    python tradedesk/crm/buyer_manager.py --move <id> --stage negotiation [--json]
    python tradedesk/crm/buyer_manager.py --log <id> --type sample_sent --notes "DHL 123" [--json]
    python tradedesk/crm/buyer_manager.py --stats [--json]
"""

import argparse
import json
import os
import sqlite3
import sys
import uuid
from datetime import datetime, timezone
from pathlib import Path

from tradedesk.audit.audit_logger import audit

BASE_DIR = Path(__file__).resolve().parent.parent.parent
DB_PATH = Path(os.environ.get(
    "TRADEDESK_DB_PATH", str(BASE_DIR / "data" / "tradedesk.db")
))

DEAL_STAGES = ["lead", "contacted", "replied", "sample", "negotiation", "won", "lost"]
INTERACTION_TYPES = ["email", "call", "meeting", "sample_sent", "quote_sent", "note"]
BUYER_TYPES = ["importer", "distributor", "retailer", "market_seller"]


def _db(db_path=None):
    conn = sqlite3.connect(str(db_path or DB_PATH))
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def _now():
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _new_id():
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------------

def add_buyer(
    company_name: str,
    country: str,
    contact_name: str = None,
    contact_email: str = None,
    contact_phone: str = None,
    website: str = None,
    channel: str = None,
    buyer_type: str = None,
    notes: str = None,
    rating: int = None,
    db_path=None,
) -> dict:
    if not company_name or not country:
        return {"status": "error", "message": "company_name and country are required"}
    if buyer_type and buyer_type not in BUYER_TYPES:
        return {"status": "error", "message": f"Invalid buyer type: {buyer_type}"}

    conn = _db(db_path)
    try:
        bid = _new_id()
        now = _now()
        conn.execute("""
            INSERT INTO buyers (
                id, company_name, country, contact_name, contact_email,
                contact_phone, website, channel, buyer_type, notes, rating,
                deal_stage, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 'lead', ?, ?)
        """, (bid, company_name, country.upper(), contact_name, contact_email,
              contact_phone, website, channel, buyer_type, notes, rating,
              now, now))
        audit(conn, "buyer.created", "crm", f"Added buyer {company_name}",
              "buyer", bid, {"country": country.upper()})
        conn.commit()
        return {"status": "success", "id": bid, "company_name": company_name,
                "deal_stage": "lead"}
    except sqlite3.Error as e:
        return {"status": "error", "message": str(e)}
    finally:
        conn.close()


def get_buyer(buyer_id: str, db_path=None) -> dict:
    conn = _db(db_path)
    try:
        row = conn.execute(
            "SELECT * FROM buyers WHERE id = ?", (buyer_id,)
        ).fetchone()
        if not row:
            return {"status": "error", "message": "Buyer not found"}

        buyer = dict(row)

        # Interaction history
        buyer["interactions"] = [dict(r) for r in conn.execute("""
            SELECT id, interaction_date, interaction_type, subject, notes,
                   next_action, next_action_date
            FROM buyer_interactions
            WHERE buyer_id = ?
            ORDER BY interaction_date DESC, rowid DESC
            LIMIT 20
        """, (buyer_id,)).fetchall()]

        # Linked export projects
        buyer["projects"] = [dict(r) for r in conn.execute("""
            SELECT id, name, pipeline_stage, updated_at
            FROM projects
            WHERE buyer_id = ?
            ORDER BY updated_at DESC
        """, (buyer_id,)).fetchall()]

        return {"status": "success", "buyer": buyer}
    finally:
        conn.close()


def list_buyers(
    deal_stage: str = None,
    country: str = None,
    search: str = None,
    include_inactive: bool = False,
    db_path=None,
) -> dict:
    conn = _db(db_path)
    try:
        query = """
            SELECT b.id, b.company_name, b.country, b.contact_name,
                   b.contact_email, b.buyer_type, b.deal_stage, b.rating,
                   b.is_active, b.updated_at,
                   COUNT(DISTINCT i.id) AS interaction_count,
                   MAX(i.interaction_date) AS last_contact_date
            FROM buyers b
            LEFT JOIN buyer_interactions i ON i.buyer_id = b.id
            WHERE 1=1
        """
        params = []
        if not include_inactive:
            query += " AND b.is_active = 1"
        if deal_stage:
            query += " AND b.deal_stage = ?"
            params.append(deal_stage)
        if country:
            query += " AND b.country = ?"
            params.append(country.upper())
        if search:
            query += " AND (b.company_name LIKE ? OR b.contact_name LIKE ? OR b.contact_email LIKE ?)"
            params.extend([f"%{search}%"] * 3)

        query += " GROUP BY b.id ORDER BY b.updated_at DESC LIMIT 200"

        rows = conn.execute(query, params).fetchall()
        return {"status": "success", "buyers": [dict(r) for r in rows],
                "count": len(rows)}
    finally:
        conn.close()


def update_buyer(buyer_id: str, db_path=None, **fields) -> dict:
    allowed = {"company_name", "country", "contact_name", "contact_email",
               "contact_phone", "website", "channel", "buyer_type", "notes",
               "rating", "is_active"}
    updates = {k: v for k, v in fields.items() if k in allowed}
    if not updates:
        return {"status": "error", "message": "No valid fields"}

    updates["updated_at"] = _now()
    cols = ", ".join(f"{k} = ?" for k in updates)
    vals = list(updates.values()) + [buyer_id]

    conn = _db(db_path)
    try:
        cur = conn.execute(f"UPDATE buyers SET {cols} WHERE id = ?", vals)
        if cur.rowcount == 0:
            return {"status": "error", "message": "Buyer not found"}
        audit(conn, "buyer.updated", "crm", "Updated buyer", "buyer", buyer_id,
              {"fields": sorted(k for k in updates if k != "updated_at")})
        conn.commit()
        return {"status": "success", "id": buyer_id, "updated": list(updates.keys())}
    except sqlite3.Error as e:
        return {"status": "error", "message": str(e)}
    finally:
        conn.close()


def move_deal_stage(buyer_id: str, deal_stage: str, db_path=None) -> dict:
    """Move a buyer to another deal stage (any stage may follow any other)."""
    if deal_stage not in DEAL_STAGES:
        return {"status": "error", "message": f"Invalid deal stage: {deal_stage}",
                "valid_stages": DEAL_STAGES}

    conn = _db(db_path)
    try:
        row = conn.execute(
            "SELECT deal_stage FROM buyers WHERE id = ?", (buyer_id,)
        ).fetchone()
        if not row:
            return {"status": "error", "message": "Buyer not found"}

        previous = row["deal_stage"]
        conn.execute(
            "UPDATE buyers SET deal_stage = ?, updated_at = ? WHERE id = ?",
            (deal_stage, _now(), buyer_id)
        )
        audit(conn, "buyer.stage_changed", "crm",
              f"Deal stage {previous} → {deal_stage}", "buyer", buyer_id,
              {"from": previous, "to": deal_stage})
        conn.commit()
        return {"status": "success", "id": buyer_id,
                "previous_stage": previous, "deal_stage": deal_stage}
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# INTERACTION LOG
# ---------------------------------------------------------------------------

def log_interaction(
    buyer_id: str,
    notes: str,
    interaction_type: str = "note",
    subject: str = None,
    next_action: str = None,
    next_action_date: str = None,
    db_path=None,
) -> dict:
    if interaction_type not in INTERACTION_TYPES:
        return {"status": "error",
                "message": f"Invalid interaction type: {interaction_type}"}

    conn = _db(db_path)
    try:
        if not conn.execute("SELECT 1 FROM buyers WHERE id = ?", (buyer_id,)).fetchone():
            return {"status": "error", "message": "Buyer not found"}

        iid = _new_id()
        now = _now()
        conn.execute("""
            INSERT INTO buyer_interactions (
                id, buyer_id, interaction_type, subject, notes,
                next_action, next_action_date, interaction_date
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """, (iid, buyer_id, interaction_type, subject, notes,
              next_action, next_action_date, now))

        conn.execute(
            "UPDATE buyers SET updated_at = ? WHERE id = ?", (now, buyer_id)
        )
        audit(conn, "buyer.interaction", "crm",
              f"Logged {interaction_type}", "buyer", buyer_id,
              {"interaction_id": iid, "next_action_date": next_action_date})
        conn.commit()
        return {"status": "success", "interaction_id": iid,
                "buyer_id": buyer_id, "date": now[:10]}
    except sqlite3.Error as e:
        return {"status": "error", "message": str(e)}
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# STATS
# ---------------------------------------------------------------------------

def crm_stats(db_path=None) -> dict:
    conn = _db(db_path)
    try:
        total = conn.execute(
            "SELECT COUNT(*) FROM buyers WHERE is_active = 1"
        ).fetchone()[0]
        by_stage = {s: 0 for s in DEAL_STAGES}
        for r in conn.execute("""
            SELECT deal_stage, COUNT(*) FROM buyers
            WHERE is_active = 1 GROUP BY deal_stage
        """).fetchall():
            by_stage[r[0]] = r[1]
        by_country = {r[0] or "unknown": r[1] for r in conn.execute("""
            SELECT country, COUNT(*)
            FROM buyers WHERE is_active = 1
            GROUP BY country
        """).fetchall()}
        pending_actions = conn.execute("""
            SELECT COUNT(*) FROM buyer_interactions
            WHERE next_action IS NOT NULL
              AND (next_action_date IS NULL OR next_action_date >= date('now'))
              AND next_action_date <= date('now', '+14 days')
        """).fetchone()[0]
        closed = by_stage["won"] + by_stage["lost"]
        return {
            "status": "success",
            "total_active": total,
            "by_stage": by_stage,
            "by_country": by_country,
            "win_rate": round(by_stage["won"] / closed, 3) if closed else None,
            "pending_actions_14d": pending_actions,
        }
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def main():
    parser = argparse.ArgumentParser(description="TradeDesk buyer CRM")
    grp = parser.add_mutually_exclusive_group(required=True)
    grp.add_argument("--list", action="store_true")
    grp.add_argument("--get", metavar="ID")
    grp.add_argument("--add", action="store_true")
    grp.add_argument("--move", metavar="BUYER_ID")
    grp.add_argument("--log", metavar="BUYER_ID")
    grp.add_argument("--stats", action="store_true")

    parser.add_argument("--company")
    parser.add_argument("--country")
    parser.add_argument("--email")
    parser.add_argument("--buyer-type", choices=BUYER_TYPES)
    parser.add_argument("--stage", choices=DEAL_STAGES)
    parser.add_argument("--type", dest="interaction_type", default="note",
                        choices=INTERACTION_TYPES)
    parser.add_argument("--notes")
    parser.add_argument("--search")
    parser.add_argument("--json", action="store_true", dest="json_out")
    args = parser.parse_args()

    if args.list:
        result = list_buyers(deal_stage=args.stage, country=args.country,
                             search=args.search)
    elif args.get:
        result = get_buyer(args.get)
    elif args.add:
        if not args.company or not args.country:
            parser.error("--company and --country required")
        result = add_buyer(
            company_name=args.company,
            country=args.country,
            contact_email=args.email,
            buyer_type=args.buyer_type,
        )
    elif args.move:
        if not args.stage:
            parser.error("--stage required")
        result = move_deal_stage(args.move, args.stage)
    elif args.log:
        if not args.notes:
            parser.error("--notes required")
        result = log_interaction(
            buyer_id=args.log,
            notes=args.notes,
            interaction_type=args.interaction_type,
        )
    else:
        result = crm_stats()

    print(json.dumps(result, indent=2, ensure_ascii=False))
    sys.exit(0 if result.get("status") == "success" else 1)


if __name__ == "__main__":
    main()
