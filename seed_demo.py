#!/usr/bin/env python3
# CUI // SP-PROPIN
"""
TradeDesk Demo Seeder
=====================
Seeds the live TradeDesk DB with three export projects that exercise the
cross-check gate and document reconciliation:

  Project 1 — Glow Imports US serum order      → BULK_ORDER (gate passes, ready to ship)
  Project 2 — Sakura Trading JP cream order    → BULK_ORDER (documents edited after
                                                  the gate; Incoterms and HS code now wrong)
  Project 3 — Nordlys EU distributor proposal  → FIRST_PROPOSAL

Everything goes through the tool modules, so audit records, version
snapshots and gate runs are created exactly as the API would create them.

Usage:
    python seed_demo.py          # seed everything
    python seed_demo.py --wipe   # remove previous demo data first
"""

import argparse
import os
import sqlite3
import sys
from pathlib import Path

# Force UTF-8 output on Windows
if hasattr(sys.stdout, "reconfigure"):
    sys.stdout.reconfigure(encoding="utf-8", errors="replace")

BASE_DIR = Path(__file__).resolve().parent
DB_PATH = Path(os.environ.get("TRADEDESK_DB_PATH",
               str(BASE_DIR / "data" / "tradedesk.db")))
sys.path.insert(0, str(BASE_DIR))

from tradedesk.compliance.rule_packs import set_item_status  # noqa: E402
from tradedesk.crm import buyer_manager  # noqa: E402
from tradedesk.crosscheck import cross_document, gate_engine  # noqa: E402
from tradedesk.db.init_db import init_db  # noqa: E402
from tradedesk.documents import document_store  # noqa: E402
from tradedesk.documents import models as docs  # noqa: E402
from tradedesk.documents.doc_templates import DOC_KEYS_BY_PRESET  # noqa: E402
from tradedesk.monitor import pipeline_manager  # noqa: E402

DEMO_PREFIX = "[DEMO]"

BUYERS = [
    {"company_name": "Glow Imports LLC", "country": "US",
     "contact_name": "Dana Whitfield", "contact_email": "dana@glowimports.example",
     "buyer_type": "importer", "channel": "trade_show"},
    {"company_name": "Sakura Trading K.K.", "country": "JP",
     "contact_name": "Ren Tanaka", "contact_email": "tanaka@sakura.example",
     "buyer_type": "distributor", "channel": "linkedin"},
    {"company_name": "Nordlys Beauty AB", "country": "SE",
     "contact_name": "Alex Lund", "contact_email": "alex@nordlys.example",
     "buyer_type": "retailer", "channel": "email"},
]

COMPLIANCE_AND_SAMPLE = [docs.DOC_COMPLIANCE_SNAPSHOT, docs.DOC_SAMPLE_PI]


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────

def _check(result, what):
    if result.get("status") != "success":
        print(f"  ✗ {what}: {result.get('message') or result.get('error') or result}")
        sys.exit(1)
    return result


def _create_docs(project_id, doc_keys):
    created = {}
    for key in doc_keys:
        res = _check(document_store.create_document(project_id, key), f"create {key}")
        created[key] = res["document"]
    return created


def _clear_rule_packs(doc):
    """Mark every rule-pack item of a compliance snapshot as passed."""
    packs = doc["fields"].get("rulepacks") or []
    cleared = packs
    for rp in packs:
        for item in rp["items"]:
            cleared = set_item_status(cleared, rp["country"], item["item"], "pass")
    _check(document_store.update_document_fields(
        doc["id"], {"rulepacks": cleared}, reason="compliance review complete",
        actor="seed"), "clear rule packs")


def _advance(project_id, *stages):
    for stage in stages:
        result = pipeline_manager.advance_stage(project_id, stage, notes="demo seed")
        if result["status"] == "blocked":
            print(f"  ✗ advance to {stage} blocked by {result.get('blocking_checks')}")
            sys.exit(1)
        _check(result, f"advance to {stage}")


# ─────────────────────────────────────────────────────────────────────────────
# Seeders
# ─────────────────────────────────────────────────────────────────────────────

def seed_buyers():
    ids = []
    for b in BUYERS:
        res = _check(buyer_manager.add_buyer(**b), f"add buyer {b['company_name']}")
        ids.append(res["id"])
    buyer_manager.move_deal_stage(ids[0], "won")
    buyer_manager.move_deal_stage(ids[1], "negotiation")
    buyer_manager.move_deal_stage(ids[2], "contacted")
    buyer_manager.log_interaction(
        ids[1], "Asked for CIF Tokyo quote", interaction_type="email",
        subject="Re: Glow Cream bulk order", next_action="Send revised PI")
    print(f"[BUYERS] {len(ids)} buyers seeded")
    return ids


def seed_ready_project(buyer_id):
    res = _check(pipeline_manager.create_project(
        f"{DEMO_PREFIX} Glow Imports US serum order", buyer_id=buyer_id,
        target_countries=["US"]), "create project 1")
    pid = res["project_id"]

    created = _create_docs(pid, COMPLIANCE_AND_SAMPLE)
    _clear_rule_packs(created[docs.DOC_COMPLIANCE_SNAPSHOT])
    _advance(pid, "sample_review")
    _create_docs(pid, DOC_KEYS_BY_PRESET["bulk_order"])
    _advance(pid, "bulk_order")

    gate = gate_engine.run_project_gate(pid, trigger="demo", actor="seed")
    print(f"[PROJECT 1] {pid} → bulk_order, gate "
          f"{gate['passed_checks']}/{gate['required_checks']} passed={gate['passed']}")
    return pid


def seed_broken_project(buyer_id):
    res = _check(pipeline_manager.create_project(
        f"{DEMO_PREFIX} Sakura Trading JP cream order", buyer_id=buyer_id,
        target_countries=["JP"]), "create project 2")
    pid = res["project_id"]

    created = _create_docs(pid, COMPLIANCE_AND_SAMPLE)
    _clear_rule_packs(created[docs.DOC_COMPLIANCE_SNAPSHOT])
    _advance(pid, "sample_review")
    bulk = _create_docs(pid, DOC_KEYS_BY_PRESET["bulk_order"])
    _advance(pid, "bulk_order")

    # Buyer renegotiated to CIF, but only the contract was updated
    _check(document_store.update_document_fields(
        bulk[docs.DOC_SALES_CONTRACT]["id"],
        {"incoterms": "CIF", "port": "Tokyo, Japan"},
        reason="buyer asked for CIF Tokyo", actor="seed"), "edit contract")
    _check(document_store.update_document_fields(
        bulk[docs.DOC_COMMERCIAL_INVOICE]["id"], {"hs_code": "3304"},
        reason="typo", actor="seed"), "edit invoice")

    gate = gate_engine.run_project_gate(pid, trigger="demo", actor="seed")
    failing = [r["id"] for r in gate["results"] if r["status"] == "FAIL"]
    warnings = cross_document.validate_project_documents(pid)["summary"]
    print(f"[PROJECT 2] {pid} → bulk_order, gate blocked by {failing}, "
          f"{warnings['total_warnings']} reconciliation warning(s)")
    return pid


def seed_proposal_project(buyer_id):
    res = _check(pipeline_manager.create_project(
        f"{DEMO_PREFIX} Nordlys EU distributor proposal", buyer_id=buyer_id,
        target_countries=["EU"], currency="EUR", incoterms="DAP"), "create project 3")
    pid = res["project_id"]
    _create_docs(pid, DOC_KEYS_BY_PRESET["first_proposal"])
    print(f"[PROJECT 3] {pid} → first_proposal")
    return pid


def wipe_demo():
    print("[WIPE] Removing previous demo data ...")
    c = sqlite3.connect(str(DB_PATH))
    try:
        project_ids = [r[0] for r in c.execute(
            "SELECT id FROM projects WHERE name LIKE ?", (f"{DEMO_PREFIX}%",))]
        if project_ids:
            ph = ",".join("?" * len(project_ids))
            ids = tuple(project_ids)
            c.execute(f"DELETE FROM document_versions WHERE document_id IN "
                      f"(SELECT id FROM documents WHERE project_id IN ({ph}))", ids)
            c.execute(f"DELETE FROM documents      WHERE project_id IN ({ph})", ids)
            c.execute(f"DELETE FROM gate_runs      WHERE project_id IN ({ph})", ids)
            c.execute(f"DELETE FROM project_stages WHERE project_id IN ({ph})", ids)
            c.execute(f"DELETE FROM projects       WHERE id IN ({ph})", ids)

        names = tuple(b["company_name"] for b in BUYERS)
        nph = ",".join("?" * len(names))
        c.execute(f"DELETE FROM buyer_interactions WHERE buyer_id IN "
                  f"(SELECT id FROM buyers WHERE company_name IN ({nph}))", names)
        c.execute(f"DELETE FROM buyers WHERE company_name IN ({nph})", names)
        c.commit()
    finally:
        c.close()
    print("[WIPE] Done.")


# ─────────────────────────────────────────────────────────────────────────────
# Main
# ─────────────────────────────────────────────────────────────────────────────

def main():
    parser = argparse.ArgumentParser(description="TradeDesk demo seeder")
    parser.add_argument("--wipe", action="store_true",
                        help="Wipe previous demo data before seeding")
    args = parser.parse_args()

    init_db()

    print(f"\n{'='*60}")
    print(" TradeDesk Demo Seeder — K-Beauty Co., Ltd.")
    print(f"{'='*60}")
    print(f" DB: {DB_PATH}")
    print(f"{'='*60}\n")

    if args.wipe:
        wipe_demo()

    buyer_ids = seed_buyers()
    seed_ready_project(buyer_ids[0])
    seed_broken_project(buyer_ids[1])
    seed_proposal_project(buyer_ids[2])

    print(f"\n{'='*60}")
    print(" DEMO SEEDING COMPLETE")
    print(f"{'='*60}")
    print("""
 Try:
   GET  /api/pipeline/status                  → project 2 listed as blocked
   POST /api/projects/<project 2>/gate        → G2 and G5 FAIL
   GET  /api/projects/<project 2>/crosscheck  → incoterms_mismatch
   POST /api/projects/<project 2>/crosscheck/unify
        {"field": "incoterms", "source_role": "contract"}
""")


if __name__ == "__main__":
    main()
