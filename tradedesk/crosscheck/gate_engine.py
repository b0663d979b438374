#!/usr/bin/env python3
# CUI // SP-PROPIN
# Controlled by: TradeDesk Portal
# CUI Category: PROPIN (Proprietary Business Information)
# Distribution: D
# POC: TradeDesk System Administrator
"""Cross-check Gate Engine — TOP10 consistency checks across trade documents.

Runs a fixed, ordered registry of checks over a project's current document
set (final PI, sales contract, commercial invoice, packing list, compliance
snapshot, sample PI) and aggregates the outcomes into a pass/fail verdict
used to guard pipeline stage transitions.

The engine itself is pure: it reads document field bags, never mutates
them, keeps no state between calls and performs no I/O.  The project-level
wrappers (run_project_gate, gate_history) load documents from the store and
persist each run to gate_runs.

Verdict rule:
    passed = no HIGH check is FAIL and every check is PASS or NEED_USER_CONFIRM

If a check raises while evaluating, the run is aborted with
GateEvaluationError; no partial result is returned.

Usage:
    python tradedesk/crosscheck/gate_engine.py --run --project-id <id> [--trigger manual] --json
    python tradedesk/crosscheck/gate_engine.py --history --project-id <id> [--limit 20] --json
    python tradedesk/crosscheck/gate_engine.py --file documents.json --json
    python tradedesk/crosscheck/gate_engine.py --checks --json
"""

import argparse
import json
import logging
import math
import os
import re
import sqlite3
import uuid
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, List, Optional

import yaml

from tradedesk.audit.audit_logger import audit
from tradedesk.crosscheck.models import (
    CheckOutcome,
    GateCheckResult,
    GateEvaluationError,
    GateRegistryError,
    GateResult,
    GateSeverity,
    GateStatus,
)
from tradedesk.documents import models as docs
from tradedesk.documents.models import DocumentInstance

BASE_DIR = Path(__file__).resolve().parent.parent.parent
DB_PATH = Path(os.environ.get(
    "TRADEDESK_DB_PATH", str(BASE_DIR / "data" / "tradedesk.db")
))
GATE_CONFIG_PATH = BASE_DIR / "args" / "gate_config.yaml"

logger = logging.getLogger("tradedesk.crosscheck")

# Absolute tolerance for currency and quantity equality
AMOUNT_TOLERANCE = 0.01

DEFAULT_GATE_CONFIG = {
    "amount_tolerance": AMOUNT_TOLERANCE,
    "required_roles": [
        docs.DOC_FINAL_PI,
        docs.DOC_SALES_CONTRACT,
        docs.DOC_COMMERCIAL_INVOICE,
        docs.DOC_PACKING_LIST,
    ],
    "clause_keywords": [
        "dispute", "claim", "governing law", "arbitration", "jurisdiction",
        "분쟁", "클레임", "준거법",
    ],
    "gated_transitions": [
        {"from": "sample_review", "to": "bulk_order"},
        {"from": "bulk_order", "to": "shipping"},
    ],
}

MIN_HS_CODE_LENGTH = 6


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

def load_gate_config(path=None):
    """Load args/gate_config.yaml over the built-in defaults.

    Missing file or missing keys fall back to DEFAULT_GATE_CONFIG.
    """
    config = dict(DEFAULT_GATE_CONFIG)
    config_path = Path(path) if path else GATE_CONFIG_PATH
    if config_path.exists():
        with open(config_path, "r", encoding="utf-8") as f:
            loaded = yaml.safe_load(f) or {}
        config.update({k: v for k, v in loaded.items() if v is not None})
    config["amount_tolerance"] = float(config["amount_tolerance"])
    return config


_CONFIG = load_gate_config()
REQUIRED_ROLES = tuple(_CONFIG["required_roles"])
CLAUSE_KEYWORDS = tuple(k.lower() for k in _CONFIG["clause_keywords"])


def configured_tolerance():
    return _CONFIG["amount_tolerance"]


def gated_transitions():
    """Set of (from_stage, to_stage) pairs that require a passing gate."""
    return {(t["from"], t["to"]) for t in _CONFIG["gated_transitions"]}


# ---------------------------------------------------------------------------
# Field helpers
# ---------------------------------------------------------------------------

def _num(value):
    try:
        value = float(value)
    except (TypeError, ValueError):
        return 0.0
    # NaN and infinity never compare outside a tolerance
    return value if math.isfinite(value) else 0.0


def _fmt(value):
    value = float(value)
    if value.is_integer():
        return str(int(value))
    return str(round(value, 6))


def _text(value):
    return "" if value is None else str(value).strip()


def _items(fields):
    """Line items of a field bag; each entry must be a mapping."""
    items = fields.get("items") or []
    for entry in items:
        if not isinstance(entry, Mapping):
            raise TypeError(
                f"line item must be an object, got {type(entry).__name__}")
    return items


def _first_by_sku(items, key):
    values = {}
    for item in items:
        sku = _text(item.get("sku"))
        if sku and sku not in values:
            values[sku] = _num(item.get(key))
    return values


def documents_by_role(documents: List[DocumentInstance]) -> Dict[str, dict]:
    """Map doc_key to field bag; the last instance of a role wins."""
    by_role = {}
    for doc in documents or []:
        fields = doc.fields if doc.fields is not None else {}
        if not isinstance(fields, Mapping):
            raise TypeError(
                f"{doc.doc_key}: fields must be an object, "
                f"got {type(fields).__name__}")
        by_role[doc.doc_key] = fields
    return by_role


def _pair_mismatches(pi, contract, keys, optional_keys=()):
    """Compare PI and contract fields; optional keys only when both define them."""
    problems = []
    for key in keys:
        a, b = _text(pi.get(key)), _text(contract.get(key))
        if a != b:
            problems.append(f"{key}: PI '{a}' ≠ Contract '{b}'")
    for key in optional_keys:
        a, b = _text(pi.get(key)), _text(contract.get(key))
        if a and b and a != b:
            problems.append(f"{key}: PI '{a}' ≠ Contract '{b}'")
    return problems


def _pi_and_contract(by_role):
    return by_role.get(docs.DOC_FINAL_PI), by_role.get(docs.DOC_SALES_CONTRACT)


# ---------------------------------------------------------------------------
# Checks
# ---------------------------------------------------------------------------

def _check_party(by_role, tolerance):
    pi, contract = _pi_and_contract(by_role)
    if pi is None or contract is None:
        return CheckOutcome.confirm("PI or sales contract missing; cannot compare parties")
    problems = _pair_mismatches(
        pi, contract, ("company_name",),
        ("address", "contact_email", "contact_phone"))
    return CheckOutcome.fail("; ".join(problems)) if problems else CheckOutcome.ok()


def _check_incoterms(by_role, tolerance):
    pi, contract = _pi_and_contract(by_role)
    if pi is None or contract is None:
        return CheckOutcome.confirm("PI or sales contract missing")
    problems = _pair_mismatches(pi, contract, ("incoterms",), ("port",))
    return CheckOutcome.fail("; ".join(problems)) if problems else CheckOutcome.ok()


def _check_payment(by_role, tolerance):
    pi, contract = _pi_and_contract(by_role)
    if pi is None or contract is None:
        return CheckOutcome.confirm("PI or sales contract missing")
    problems = _pair_mismatches(
        pi, contract, ("payment_terms",), ("bank_swift", "bank_account_no"))
    return CheckOutcome.fail("; ".join(problems)) if problems else CheckOutcome.ok()


def _check_amounts(by_role, tolerance):
    pi = by_role.get(docs.DOC_FINAL_PI)
    if pi is None:
        return CheckOutcome.confirm("Final PI missing")

    total = 0.0
    for item in _items(pi):
        qty, price, amount = (_num(item.get("qty")), _num(item.get("unit_price")),
                              _num(item.get("amount")))
        expected = qty * price
        if abs(expected - amount) > tolerance:
            return CheckOutcome.fail(
                f"{_text(item.get('sku'))}: {_fmt(qty)}×{_fmt(price)}="
                f"{_fmt(expected)} ≠ {_fmt(amount)}")
        total += amount

    declared = _num(pi.get("total_amount"))
    if abs(total - declared) > tolerance:
        return CheckOutcome.fail(
            f"Calculated total {_fmt(total)} ≠ declared total {_fmt(declared)}")
    return CheckOutcome.ok()


def _check_hs_code(by_role, tolerance):
    invoice = by_role.get(docs.DOC_COMMERCIAL_INVOICE)
    if invoice is None:
        return CheckOutcome.confirm("Commercial invoice missing")
    hs_code = re.sub(r"[\s.]", "", _text(invoice.get("hs_code")))
    if len(hs_code) < MIN_HS_CODE_LENGTH:
        return CheckOutcome.fail(
            f"HS code missing or shorter than {MIN_HS_CODE_LENGTH} digits "
            f"('{hs_code}')")
    return CheckOutcome.ok()


def _check_compliance(by_role, tolerance):
    snapshot = next(
        (fields for key, fields in by_role.items() if "COMPLIANCE" in key), None)
    if snapshot is None:
        return CheckOutcome.confirm("Compliance snapshot missing")

    open_counts = []
    for rp in snapshot.get("rulepacks") or []:
        if not isinstance(rp, Mapping):
            raise TypeError(f"rule pack must be an object, got {type(rp).__name__}")
        count = sum(
            1 for item in _items(rp)
            if item.get("status") in ("pending", "fail")
        )
        if count:
            open_counts.append(f"{_text(rp.get('country')) or '?'}: {count}")

    if open_counts:
        return CheckOutcome.fail(
            ", ".join(open_counts) + " item(s) pending or failed")
    return CheckOutcome.ok()


def _check_sample_changes(by_role, tolerance):
    sample = by_role.get(docs.DOC_SAMPLE_PI)
    final = by_role.get(docs.DOC_FINAL_PI)
    if sample is None or final is None:
        return CheckOutcome.ok("No sample PI to compare")

    final_prices = _first_by_sku(_items(final), "unit_price")
    changes = []
    for sku, price in _first_by_sku(_items(sample), "unit_price").items():
        if sku in final_prices and abs(price - final_prices[sku]) > tolerance:
            changes.append(
                f"{sku}: sample unit price {_fmt(price)} → final "
                f"{_fmt(final_prices[sku])}")
    if changes:
        return CheckOutcome.confirm("; ".join(changes))
    return CheckOutcome.ok()


def _check_packing_list(by_role, tolerance):
    packing = by_role.get(docs.DOC_PACKING_LIST)
    pi = by_role.get(docs.DOC_FINAL_PI)
    if packing is None or pi is None:
        return CheckOutcome.confirm("Packing list or final PI missing")

    pi_qty = _first_by_sku(_items(pi), "qty")
    for item in _items(packing):
        sku = _text(item.get("sku"))
        qty = _num(item.get("qty"))
        if sku in pi_qty and abs(qty - pi_qty[sku]) > tolerance:
            return CheckOutcome.fail(
                f"{sku}: packing list qty {_fmt(qty)} ≠ PI qty {_fmt(pi_qty[sku])}")
    return CheckOutcome.ok()


def _check_required_documents(by_role, tolerance):
    missing = [role for role in REQUIRED_ROLES if role not in by_role]
    if missing:
        return CheckOutcome.fail(
            f"{len(missing)} required document(s) missing: {', '.join(missing)}")
    return CheckOutcome.ok()


def _clause_text(term):
    if isinstance(term, Mapping):
        return _text(term.get("clause"))
    return _text(term)


def _check_contract_clauses(by_role, tolerance):
    contract = by_role.get(docs.DOC_SALES_CONTRACT)
    if contract is None:
        return CheckOutcome.fail("Sales contract missing")

    for term in contract.get("terms") or []:
        text = _clause_text(term).lower()
        if any(keyword in text for keyword in CLAUSE_KEYWORDS):
            return CheckOutcome.ok()
    return CheckOutcome.confirm("No dispute, claim or governing-law clause found")


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class GateCheckDefinition:
    id: str
    title: str
    title_en: str
    severity: GateSeverity
    rule: str
    fix_action_label: str
    check: Callable[[Dict[str, dict], float], CheckOutcome]

    def evaluate(self, documents, tolerance=None) -> CheckOutcome:
        """Evaluate this check alone against a list of documents."""
        tol = configured_tolerance() if tolerance is None else tolerance
        return self.check(documents_by_role(documents), tol)


GATE_CHECKS = (
    GateCheckDefinition(
        "G1", "당사자/주소/담당자/연락처 불일치", "Party/Address/Contact Mismatch",
        GateSeverity.HIGH,
        "PI와 계약서의 당사자 정보가 일치해야 함",
        "당사자 정보 확인하기", _check_party),
    GateCheckDefinition(
        "G2", "인코텀즈+Port/Place 불일치", "Incoterms/Port Mismatch",
        GateSeverity.HIGH,
        "Incoterms와 Port/Place가 PI와 계약서에서 일치해야 함",
        "인코텀즈 맞추기", _check_incoterms),
    GateCheckDefinition(
        "G3", "결제조건/은행정보 불일치", "Payment Terms/Bank Info Mismatch",
        GateSeverity.HIGH,
        "결제조건과 은행정보가 일치해야 함",
        "결제조건 확인하기", _check_payment),
    GateCheckDefinition(
        "G4", "SKU/수량/단가/총액 계산 오류", "SKU/Qty/Price/Total Calculation Error",
        GateSeverity.HIGH,
        "모든 품목의 수량×단가=금액, 합계가 일치해야 함",
        "금액 재계산하기", _check_amounts),
    GateCheckDefinition(
        "G5", "HS Code/Origin 누락", "HS Code/Origin Missing",
        GateSeverity.HIGH,
        "HS Code 6자리 이상 필수",
        "HS Code 입력하기", _check_hs_code),
    GateCheckDefinition(
        "G6", "컴플라이언스 미완료 항목 존재", "Compliance Action Required",
        GateSeverity.HIGH,
        "RulePack에 확인/조치 필요 항목이 없어야 함",
        "규제 확인하기", _check_compliance),
    GateCheckDefinition(
        "G7", "샘플→본오더 변경조건 미반영", "Sample to Bulk Order Changes Not Reflected",
        GateSeverity.MED,
        "샘플 단계 조건 변경이 본오더에 반영되어야 함",
        "변경사항 확인하기", _check_sample_changes),
    GateCheckDefinition(
        "G8", "Packing List vs PI 불일치", "Packing List vs PI Mismatch",
        GateSeverity.MED,
        "포장명세서의 수량이 PI와 일치해야 함",
        "포장정보 확인하기", _check_packing_list),
    GateCheckDefinition(
        "G9", "필수 첨부서류 미완료", "Required Attachments Incomplete",
        GateSeverity.MED,
        "필수 서류(최종 PI, 계약서, 상업송장, 포장명세서)가 모두 준비되어야 함",
        "필수서류 확인하기", _check_required_documents),
    GateCheckDefinition(
        "G10", "계약서 필수 조항 미충족", "Contract Required Clauses Missing",
        GateSeverity.MED,
        "분쟁/클레임/관할 조항이 포함되어야 함",
        "계약 조항 확인하기", _check_contract_clauses),
)


def _validate_registry(checks):
    if not checks:
        raise GateRegistryError("Gate check registry is empty")
    seen = set()
    for check in checks:
        if check.id in seen:
            raise GateRegistryError(f"Duplicate gate check id: {check.id}")
        if not isinstance(check.severity, GateSeverity):
            raise GateRegistryError(f"{check.id}: invalid severity {check.severity!r}")
        seen.add(check.id)


_validate_registry(GATE_CHECKS)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

def run_gate(documents: List[DocumentInstance],
             tolerance: Optional[float] = None) -> GateResult:
    """Run every registered check and aggregate the verdict.

    Args:
        documents: Current document instances of one project.
        tolerance: Absolute numeric tolerance; defaults to the configured
            amount_tolerance.

    Raises:
        GateEvaluationError: a check could not be evaluated on this input.
    """
    tol = configured_tolerance() if tolerance is None else tolerance
    try:
        by_role = documents_by_role(documents)
    except (TypeError, AttributeError) as e:
        raise GateEvaluationError("input", str(e)) from e

    results = []
    for definition in GATE_CHECKS:
        try:
            outcome = definition.check(by_role, tol)
        except Exception as e:
            raise GateEvaluationError(definition.id, str(e)) from e
        results.append(GateCheckResult(
            id=definition.id,
            title=definition.title,
            title_en=definition.title_en,
            severity=definition.severity,
            rule=definition.rule,
            status=outcome.status,
            fix_action_label=definition.fix_action_label,
            details=outcome.details,
        ))

    has_high_fail = any(
        r.severity == GateSeverity.HIGH and r.status == GateStatus.FAIL
        for r in results)
    all_clear = all(
        r.status in (GateStatus.PASS, GateStatus.NEED_USER_CONFIRM)
        for r in results)

    return GateResult(
        passed=not has_high_fail and all_clear,
        passed_checks=sum(1 for r in results if r.status == GateStatus.PASS),
        required_checks=len(GATE_CHECKS),
        results=results,
    )


# ---------------------------------------------------------------------------
# Project-level runs
# ---------------------------------------------------------------------------

def _get_db(db_path=None):
    conn = sqlite3.connect(str(db_path or DB_PATH))
    conn.row_factory = sqlite3.Row
    return conn


def _now():
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def run_project_gate(project_id, trigger="manual", actor="gate_engine",
                     db_path=None):
    """Run the gate over a project's current documents and persist the run."""
    from tradedesk.documents.document_store import current_documents

    conn = _get_db(db_path)
    try:
        project = conn.execute(
            "SELECT id FROM projects WHERE id = ?", (project_id,)
        ).fetchone()
        if not project:
            return {"status": "error", "message": f"Project {project_id} not found"}

        documents = current_documents(project_id, db_path=db_path)
        run_id = f"gate-{uuid.uuid4().hex[:12]}"

        try:
            result = run_gate(documents)
        except GateEvaluationError as e:
            logger.error("Gate run failed for project %s: %s", project_id, e)
            conn.execute(
                "INSERT INTO gate_runs (id, project_id, trigger, passed, "
                "passed_checks, required_checks, results, error, created_at) "
                "VALUES (?, ?, ?, 0, 0, ?, NULL, ?, ?)",
                (run_id, project_id, trigger, len(GATE_CHECKS), str(e), _now()),
            )
            audit(conn, "gate.error", actor, f"Gate run aborted at {e.check_id}",
                  "project", project_id,
                  {"run_id": run_id, "trigger": trigger, "error": str(e)})
            conn.commit()
            return {
                "status": "error",
                "run_id": run_id,
                "project_id": project_id,
                "check_id": e.check_id,
                "error": str(e),
            }

        payload = result.to_dict()
        conn.execute(
            "INSERT INTO gate_runs (id, project_id, trigger, passed, "
            "passed_checks, required_checks, results, error, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, NULL, ?)",
            (run_id, project_id, trigger, int(result.passed),
             result.passed_checks, result.required_checks,
             json.dumps(payload["results"], ensure_ascii=False), _now()),
        )
        audit(conn, "gate.run", actor,
              f"Gate {'passed' if result.passed else 'blocked'} "
              f"({result.passed_checks}/{result.required_checks})",
              "project", project_id,
              {"run_id": run_id, "trigger": trigger,
               "failed": [r.id for r in result.blocking]})
        conn.commit()

        logger.info("Gate run %s for %s: passed=%s %d/%d", run_id, project_id,
                    result.passed, result.passed_checks, result.required_checks)
        return {
            "status": "success",
            "run_id": run_id,
            "project_id": project_id,
            "trigger": trigger,
            "document_count": len(documents),
            **payload,
        }
    finally:
        conn.close()


def gate_history(project_id, limit=20, db_path=None):
    """Prior gate runs of a project, newest first."""
    conn = _get_db(db_path)
    try:
        rows = conn.execute(
            "SELECT * FROM gate_runs WHERE project_id = ? "
            "ORDER BY created_at DESC, rowid DESC LIMIT ?",
            (project_id, limit),
        ).fetchall()
        runs = []
        for row in rows:
            run = dict(row)
            run["passed"] = bool(run["passed"])
            run["results"] = json.loads(run["results"]) if run["results"] else []
            runs.append(run)
        return {"status": "success", "project_id": project_id,
                "count": len(runs), "runs": runs}
    finally:
        conn.close()


def _documents_from_file(path):
    with open(path, "r", encoding="utf-8") as f:
        raw = json.load(f)
    return [DocumentInstance(doc_key=d["doc_key"], fields=d.get("fields") or {})
            for d in raw]


def main():
    parser = argparse.ArgumentParser(description="TradeDesk Cross-check Gate Engine")
    parser.add_argument("--run", action="store_true", help="Run gate for a project")
    parser.add_argument("--history", action="store_true", help="List prior runs")
    parser.add_argument("--checks", action="store_true", help="List registered checks")
    parser.add_argument("--file", help="JSON list of {doc_key, fields} to check")
    parser.add_argument("--project-id")
    parser.add_argument("--trigger", default="manual")
    parser.add_argument("--limit", type=int, default=20)
    parser.add_argument("--json", action="store_true", help="JSON output")
    args = parser.parse_args()

    if args.run:
        if not args.project_id:
            parser.error("--project-id is required with --run")
        result = run_project_gate(args.project_id, args.trigger, actor="cli")
    elif args.history:
        if not args.project_id:
            parser.error("--project-id is required with --history")
        result = gate_history(args.project_id, args.limit)
    elif args.file:
        result = run_gate(_documents_from_file(args.file)).to_dict()
    elif args.checks:
        result = [
            {"id": c.id, "title": c.title, "title_en": c.title_en,
             "severity": c.severity.value, "rule": c.rule}
            for c in GATE_CHECKS
        ]
    else:
        parser.print_help()
        return

    if args.json or args.checks or args.history:
        print(json.dumps(result, indent=2, ensure_ascii=False, default=str))
        return

    if result.get("status") == "error":
        print(f"ERROR: {result.get('error') or result.get('message')}")
        return
    verdict = "PASSED" if result["passed"] else "BLOCKED"
    print(f"Gate {verdict}: {result['passed_checks']}/{result['required_checks']} checks")
    for r in result["results"]:
        line = f"  [{r['status']:17s}] {r['id']:3s} {r['severity']:4s} {r['title_en']}"
        if r.get("details"):
            line += f": {r['details']}"
        print(line)


if __name__ == "__main__":
    main()
