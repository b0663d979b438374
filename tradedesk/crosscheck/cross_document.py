#!/usr/bin/env python3
# CUI // SP-PROPIN
# Controlled by: TradeDesk Portal
# CUI Category: PROPIN (Proprietary Business Information)
# Distribution: D
# POC: TradeDesk System Administrator
"""Cross-document field reconciliation for PI, sales contract and catalog.

Lighter than the gate: runs while documents are still being drafted and
reports every disagreement on shared trade terms (currency, Incoterms,
payment terms, lead time, MOQ) plus per-SKU qty / unit price / amount
between PI and contract.  Warnings carry no severity; summarize_warnings
counts the ones on critical fields.

unify_values copies one document's value for a field onto every other
document and returns a new mapping; apply_unify commits that through the
document store, which snapshots the previous versions.

Usage:
    python tradedesk/crosscheck/cross_document.py --validate --project-id <id> --json
    python tradedesk/crosscheck/cross_document.py --unify incoterms --source contract --project-id <id> --json
"""

import argparse
import copy
import dataclasses
import json
import logging
import math
from collections.abc import Mapping
from typing import Dict, List, Optional

from tradedesk.crosscheck.models import CrossDocumentWarning, DocumentValues
from tradedesk.documents import models as docs

logger = logging.getLogger("tradedesk.crosscheck")

# Comparison order of roles in warnings
ROLES = ("pi", "contract", "catalog")

SCALAR_FIELDS = ("currency", "incoterms", "payment_terms", "lead_time", "moq")
SKU_ATTRIBUTES = ("qty", "unit_price", "amount")
CRITICAL_FIELDS = frozenset({"currency", "incoterms", "payment_terms"})

SKU_TOLERANCE = 0.01

FIELD_LABELS = {
    "currency": "currency",
    "incoterms": "Incoterms",
    "payment_terms": "payment terms",
    "lead_time": "lead time",
    "moq": "MOQ",
    "qty": "quantity",
    "unit_price": "unit price",
    "amount": "amount",
}

# Store roles; a PI role falls back to the sample PI before the final PI exists
ROLE_DOC_KEYS = {
    "pi": (docs.DOC_FINAL_PI, docs.DOC_SAMPLE_PI),
    "contract": (docs.DOC_SALES_CONTRACT,),
    "catalog": (docs.DOC_PRODUCT_CATALOG,),
}


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------

def extract_comparable_values(role: str, template_data: dict) -> DocumentValues:
    """Pull the reconciled trade terms out of a document's template data.

    ``template_data`` has a ``trade`` mapping with the scalar terms and a
    ``skus`` list of ``{sku, qty, unit_price, amount}``.
    """
    if role not in ROLES:
        raise ValueError(f"Unknown document role: {role}")

    trade = template_data.get("trade") or {}
    sku_prices = {}
    for entry in template_data.get("skus") or []:
        sku = entry.get("sku")
        if not sku:
            continue
        sku_prices[str(sku)] = {
            "qty": entry.get("qty"),
            "unit_price": entry.get("unit_price"),
            "amount": entry.get("amount"),
        }

    return DocumentValues(
        currency=trade.get("currency"),
        incoterms=trade.get("incoterms"),
        payment_terms=trade.get("payment_terms"),
        lead_time=trade.get("lead_time"),
        moq=trade.get("moq"),
        sku_prices=sku_prices,
    )


def template_data_from_fields(fields: dict) -> dict:
    """Shape a document field bag as template data (items/products → skus)."""
    lines = fields.get("items") or fields.get("products") or []
    return {
        "trade": {key: fields.get(key) for key in SCALAR_FIELDS},
        "skus": [
            {"sku": line.get("sku"), "qty": line.get("qty"),
             "unit_price": line.get("unit_price"), "amount": line.get("amount")}
            for line in lines if isinstance(line, Mapping)
        ],
    }


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def _present_roles(documents_by_role):
    return [role for role in ROLES if documents_by_role.get(role) is not None]


def _is_number(value):
    return (isinstance(value, (int, float)) and not isinstance(value, bool)
            and math.isfinite(value))


def _differs(a, b, tolerance):
    if _is_number(a) and _is_number(b):
        return abs(a - b) > tolerance
    return a != b


def _scalar_warning(field, present, documents_by_role):
    values = {}
    for role in present:
        value = getattr(documents_by_role[role], field)
        if value:
            values[role] = value

    if field == "lead_time":
        distinct = {str(v) for v in values.values()}
    else:
        distinct = set(values.values())
    if len(distinct) <= 1:
        return None

    return CrossDocumentWarning(
        id=f"{field}_mismatch",
        field=field,
        message=f"Documents disagree on {FIELD_LABELS[field]}",
        documents=list(values.keys()),
        values=values,
    )


def validate_cross_document(documents_by_role: Dict[str, Optional[DocumentValues]],
                            tolerance: float = SKU_TOLERANCE
                            ) -> List[CrossDocumentWarning]:
    """Report every disagreement between the present documents.

    Nothing is compared unless at least two of pi / contract / catalog are
    present.  Per-SKU figures are compared between PI and contract only,
    and only for SKUs that appear in both.
    """
    present = _present_roles(documents_by_role)
    if len(present) < 2:
        return []

    warnings = []
    for field in SCALAR_FIELDS:
        warning = _scalar_warning(field, present, documents_by_role)
        if warning:
            warnings.append(warning)

    pi = documents_by_role.get("pi")
    contract = documents_by_role.get("contract")
    if pi is not None and contract is not None:
        for sku, pi_line in (pi.sku_prices or {}).items():
            contract_line = (contract.sku_prices or {}).get(sku)
            if contract_line is None:
                continue
            for attr in SKU_ATTRIBUTES:
                a, b = pi_line.get(attr), contract_line.get(attr)
                if _differs(a, b, tolerance):
                    warnings.append(CrossDocumentWarning(
                        id=f"{attr}_mismatch_{sku}",
                        field=f"{sku}.{attr}",
                        message=f"{sku}: PI and contract {FIELD_LABELS[attr]} differ",
                        documents=["pi", "contract"],
                        values={"pi": a, "contract": b},
                    ))

    return warnings


def _copy_values(values, **changes):
    return dataclasses.replace(
        values, sku_prices=copy.deepcopy(values.sku_prices), **changes)


def unify_values(documents_by_role, field, source_role):
    """Copy ``source_role``'s value for ``field`` onto every present role.

    Returns a new mapping of new DocumentValues; the input is left untouched.
    A missing source value yields an unchanged copy.

    Raises:
        ValueError: ``field`` is not a unifiable scalar field.
    """
    if field not in SCALAR_FIELDS:
        raise ValueError(
            f"Cannot unify '{field}'; expected one of {', '.join(SCALAR_FIELDS)}")

    source = documents_by_role.get(source_role)
    value = getattr(source, field) if source is not None else None

    unified = {}
    for role, values in documents_by_role.items():
        if values is None:
            unified[role] = None
        elif value is None:
            unified[role] = _copy_values(values)
        else:
            unified[role] = _copy_values(values, **{field: value})
    return unified


def summarize_warnings(warnings: List[CrossDocumentWarning]) -> dict:
    fields = []
    for w in warnings:
        head = w.field.split(".")[0]
        if head not in fields:
            fields.append(head)
    return {
        "total_warnings": len(warnings),
        "critical_count": sum(1 for w in warnings if w.field in CRITICAL_FIELDS),
        "fields": fields,
    }


# ---------------------------------------------------------------------------
# Store-backed operations
# ---------------------------------------------------------------------------

def _project_roles(project_id, db_path=None):
    """Map role to (document, DocumentValues) for a project's current docs."""
    from tradedesk.documents.document_store import current_documents

    by_key = {d.doc_key: d for d in current_documents(project_id, db_path=db_path)}
    roles = {}
    for role, keys in ROLE_DOC_KEYS.items():
        doc = next((by_key[k] for k in keys if k in by_key), None)
        if doc is not None:
            values = extract_comparable_values(
                role, template_data_from_fields(doc.fields or {}))
            roles[role] = (doc, values)
    return roles


def validate_project_documents(project_id, db_path=None):
    """Reconcile a project's current PI, contract and catalog."""
    roles = _project_roles(project_id, db_path)
    warnings = validate_cross_document({r: v for r, (_, v) in roles.items()})
    return {
        "status": "success",
        "project_id": project_id,
        "documents": {r: d.id for r, (d, _) in roles.items()},
        "warnings": [w.to_dict() for w in warnings],
        "summary": summarize_warnings(warnings),
    }


def apply_unify(project_id, field, source_role, db_path=None):
    """Unify ``field`` to the source document's value and persist it.

    Each document update commits on its own.  If one fails, the error is
    returned with ``failed_role`` and the ``updated`` documents so far.
    """
    from tradedesk.documents.document_store import update_document_fields

    roles = _project_roles(project_id, db_path)
    if source_role not in roles:
        return {"status": "error",
                "message": f"No current '{source_role}' document in project {project_id}"}

    try:
        unified = unify_values({r: v for r, (_, v) in roles.items()},
                               field, source_role)
    except ValueError as e:
        return {"status": "error", "message": str(e)}

    value = getattr(unified[source_role], field)
    updated = []
    for role, (doc, before) in roles.items():
        if role == source_role or getattr(before, field) == value:
            continue
        result = update_document_fields(
            doc.id, {field: value}, reason=f"unify {field} from {source_role}",
            actor="reconciliation", db_path=db_path)
        if result.get("status") != "success":
            # Earlier documents stay unified; report them with the failure
            logger.warning("Unify %s stopped at %s after %d update(s): %s",
                           field, role, len(updated), result.get("message"))
            return dict(result, project_id=project_id, field=field,
                        failed_role=role, updated=updated)
        updated.append({"role": role, "document_id": doc.id,
                        "version": result["version"]})

    logger.info("Unified %s=%r across %d document(s) in %s",
                field, value, len(updated), project_id)
    remaining = validate_project_documents(project_id, db_path)
    return {
        "status": "success",
        "project_id": project_id,
        "field": field,
        "source_role": source_role,
        "value": value,
        "updated": updated,
        "remaining_warnings": remaining["summary"]["total_warnings"],
    }


def main():
    parser = argparse.ArgumentParser(description="TradeDesk cross-document reconciliation")
    parser.add_argument("--validate", action="store_true")
    parser.add_argument("--unify", metavar="FIELD")
    parser.add_argument("--source", metavar="ROLE", choices=ROLES)
    parser.add_argument("--project-id", required=True)
    parser.add_argument("--json", action="store_true")
    args = parser.parse_args()

    if args.unify:
        if not args.source:
            parser.error("--source is required with --unify")
        result = apply_unify(args.project_id, args.unify, args.source)
    elif args.validate:
        result = validate_project_documents(args.project_id)
    else:
        parser.print_help()
        return

    if args.json:
        print(json.dumps(result, indent=2, ensure_ascii=False, default=str))
    elif result.get("status") != "success":
        print(f"ERROR: {result.get('message')}")
    elif args.validate:
        summary = result["summary"]
        print(f"{summary['total_warnings']} warning(s), "
              f"{summary['critical_count']} critical")
        for w in result["warnings"]:
            print(f"  {w['field']:20s} {w['values']}")
    else:
        print(f"Unified {result['field']} = {result['value']} "
              f"({len(result['updated'])} document(s) updated)")


if __name__ == "__main__":
    main()
