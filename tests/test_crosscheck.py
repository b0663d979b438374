#!/usr/bin/env python3
# CUI // SP-PROPIN
"""Cross-check gate engine and cross-document reconciliation tests.

These run against in-memory documents only; no database is touched.

Usage:
    pytest tests/test_crosscheck.py -v --tb=short
"""

import copy
import json
import sys
from pathlib import Path

import pytest

BASE_DIR = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(BASE_DIR))

from tradedesk.crosscheck import cross_document as xd  # noqa: E402
from tradedesk.crosscheck import gate_engine as ge  # noqa: E402
from tradedesk.crosscheck.models import (  # noqa: E402
    DocumentValues,
    GateEvaluationError,
    GateRegistryError,
    GateSeverity,
    GateStatus,
)
from tradedesk.documents import models as docs  # noqa: E402
from tradedesk.documents.models import DocumentInstance  # noqa: E402

PARTY = {
    "company_name": "K-Beauty Co., Ltd.",
    "address": "Seoul, South Korea",
    "contact_email": "export@kbeauty.com",
}
TRADE = {
    "currency": "USD",
    "incoterms": "FOB",
    "port": "Busan, Korea",
    "payment_terms": "T/T 30/70",
}
CLAUSE = "Governing law: Republic of Korea; disputes via arbitration"


def _line(sku="HS-001", qty=5000, unit_price=3.5, amount=17500.0):
    return {"sku": sku, "qty": qty, "unit_price": unit_price, "amount": amount}


def _bulk_set(items=None, total=None, contract=None, invoice=None,
              packing=None, rulepacks=None, sample_items=None):
    """A fully consistent bulk-order set; keyword overrides replace fields."""
    items = items if items is not None else [_line()]
    if total is None:
        total = sum(i["amount"] for i in items)

    pi_fields = dict(PARTY, **TRADE, items=items, total_amount=total)
    contract_fields = dict(PARTY, **TRADE, items=copy.deepcopy(items),
                           total_amount=total, terms=[CLAUSE])
    contract_fields.update(contract or {})
    invoice_fields = {"hs_code": "330499", "origin": "Republic of Korea",
                      "items": copy.deepcopy(items)}
    invoice_fields.update(invoice or {})
    packing_fields = {"items": packing if packing is not None else
                      [{"sku": i["sku"], "qty": i["qty"]} for i in items]}
    compliance_fields = {"rulepacks": rulepacks if rulepacks is not None else [
        {"country": "US", "items": [
            {"item": "FDA MoCRA facility and product listing", "status": "pass"},
            {"item": "Warning statements", "status": "warn"},
        ]},
    ]}

    documents = [
        DocumentInstance(docs.DOC_FINAL_PI, pi_fields),
        DocumentInstance(docs.DOC_SALES_CONTRACT, contract_fields),
        DocumentInstance(docs.DOC_COMMERCIAL_INVOICE, invoice_fields),
        DocumentInstance(docs.DOC_PACKING_LIST, packing_fields),
        DocumentInstance(docs.DOC_COMPLIANCE_SNAPSHOT, compliance_fields),
    ]
    if sample_items is not None:
        documents.append(DocumentInstance(
            docs.DOC_SAMPLE_PI, dict(PARTY, **TRADE, items=sample_items)))
    return documents


def _status(result, check_id):
    return next(r for r in result.results if r.id == check_id).status


def _details(result, check_id):
    return next(r for r in result.results if r.id == check_id).details


# =========================================================================
# REGISTRY
# =========================================================================
class TestGateRegistry:
    """The fixed check registry."""

    def test_ten_checks_in_order(self):
        assert [c.id for c in ge.GATE_CHECKS] == [f"G{i}" for i in range(1, 11)]

    def test_severities(self):
        high = {c.id for c in ge.GATE_CHECKS if c.severity == GateSeverity.HIGH}
        med = {c.id for c in ge.GATE_CHECKS if c.severity == GateSeverity.MED}
        assert high == {"G1", "G2", "G3", "G4", "G5", "G6"}
        assert med == {"G7", "G8", "G9", "G10"}

    def test_every_check_has_labels(self):
        for c in ge.GATE_CHECKS:
            assert c.title and c.title_en and c.rule and c.fix_action_label

    def test_duplicate_id_rejected(self):
        checks = ge.GATE_CHECKS + (ge.GATE_CHECKS[0],)
        with pytest.raises(GateRegistryError):
            ge._validate_registry(checks)

    def test_empty_registry_rejected(self):
        with pytest.raises(GateRegistryError):
            ge._validate_registry(())

    def test_single_check_evaluate(self):
        g5 = next(c for c in ge.GATE_CHECKS if c.id == "G5")
        outcome = g5.evaluate(_bulk_set(invoice={"hs_code": "33"}))
        assert outcome.status == GateStatus.FAIL


# =========================================================================
# GATE VERDICT
# =========================================================================
class TestGateVerdict:
    """Aggregate verdict and counts."""

    def test_consistent_set_passes(self):
        result = ge.run_gate(_bulk_set())
        assert result.passed is True
        assert result.passed_checks == 10
        assert result.required_checks == 10
        assert all(r.status == GateStatus.PASS for r in result.results)

    def test_results_in_registry_order(self):
        result = ge.run_gate(_bulk_set())
        assert [r.id for r in result.results] == [c.id for c in ge.GATE_CHECKS]

    def test_deterministic(self):
        documents = _bulk_set(invoice={"hs_code": "330"},
                              sample_items=[_line(unit_price=3.0)])
        first = ge.run_gate(documents).to_dict()
        second = ge.run_gate(documents).to_dict()
        assert first == second

    def test_inputs_not_mutated(self):
        documents = _bulk_set(items=[_line(amount=1.0)], total=1.0)
        before = copy.deepcopy([d.fields for d in documents])
        ge.run_gate(documents)
        assert [d.fields for d in documents] == before

    def test_pi_only(self):
        pi = _bulk_set()[0]
        result = ge.run_gate([pi])
        for check_id in ("G1", "G2", "G3"):
            assert _status(result, check_id) == GateStatus.NEED_USER_CONFIRM
        assert _status(result, "G9") == GateStatus.FAIL
        assert "3 required document(s) missing" in _details(result, "G9")
        assert result.passed is False

    def test_empty_document_list(self):
        result = ge.run_gate([])
        assert result.passed is False
        assert _status(result, "G9") == GateStatus.FAIL
        assert _status(result, "G10") == GateStatus.FAIL
        assert len(result.results) == 10

    def test_confirm_does_not_block(self):
        result = ge.run_gate(_bulk_set(sample_items=[_line(unit_price=3.0)]))
        assert _status(result, "G7") == GateStatus.NEED_USER_CONFIRM
        assert result.passed is True
        assert result.passed_checks == 9
        assert [r.id for r in result.needs_confirmation] == ["G7"]

    def test_med_fail_blocks(self):
        result = ge.run_gate(_bulk_set(packing=[{"sku": "HS-001", "qty": 4999}]))
        assert _status(result, "G8") == GateStatus.FAIL
        assert result.passed is False
        assert [r.id for r in result.blocking] == ["G8"]

    def test_to_dict_shape(self):
        payload = ge.run_gate(_bulk_set()).to_dict()
        row = payload["results"][0]
        assert set(row) == {"id", "title", "title_en", "severity", "rule",
                            "status", "fix_action_label", "details"}
        assert row["severity"] == "HIGH"
        assert row["status"] == "PASS"

    def test_unknown_roles_ignored(self):
        documents = _bulk_set() + [
            DocumentInstance(docs.DOC_BRAND_DECK, {"company_name": "Other"}),
        ]
        assert ge.run_gate(documents).passed is True

    def test_last_instance_of_role_wins(self):
        documents = _bulk_set()
        broken = copy.deepcopy(documents[0].fields)
        broken["total_amount"] = 1
        documents.append(DocumentInstance(docs.DOC_FINAL_PI, broken))
        assert _status(ge.run_gate(documents), "G4") == GateStatus.FAIL


# =========================================================================
# INDIVIDUAL CHECKS
# =========================================================================
class TestGateChecks:
    """Per-check PASS / FAIL / NEED_USER_CONFIRM behaviour."""

    def test_party_mismatch(self):
        result = ge.run_gate(_bulk_set(contract={"company_name": "KB Co"}))
        assert _status(result, "G1") == GateStatus.FAIL
        assert "company_name" in _details(result, "G1")

    def test_party_optional_field_one_sided(self):
        documents = _bulk_set()
        del documents[1].fields["address"]
        assert _status(ge.run_gate(documents), "G1") == GateStatus.PASS

    def test_party_whitespace_ignored(self):
        result = ge.run_gate(_bulk_set(contract={"company_name": " K-Beauty Co., Ltd. "}))
        assert _status(result, "G1") == GateStatus.PASS

    def test_incoterms_mismatch(self):
        result = ge.run_gate(_bulk_set(contract={"incoterms": "CIF"}))
        assert _status(result, "G2") == GateStatus.FAIL
        assert "FOB" in _details(result, "G2") and "CIF" in _details(result, "G2")
        assert result.passed is False

    def test_port_mismatch(self):
        result = ge.run_gate(_bulk_set(contract={"port": "Incheon, Korea"}))
        assert _status(result, "G2") == GateStatus.FAIL

    def test_payment_bank_mismatch(self):
        documents = _bulk_set(contract={"bank_swift": "KOEXKRSE"})
        documents[0].fields["bank_swift"] = "HVBKKRSE"
        assert _status(ge.run_gate(documents), "G3") == GateStatus.FAIL

    def test_amount_within_tolerance(self):
        items = [_line(amount=17500.009)]
        result = ge.run_gate(_bulk_set(items=items))
        assert _status(result, "G4") == GateStatus.PASS

    def test_amount_beyond_tolerance(self):
        items = [_line(amount=17500.02)]
        result = ge.run_gate(_bulk_set(items=items))
        assert _status(result, "G4") == GateStatus.FAIL
        assert "HS-001" in _details(result, "G4")
        assert result.passed is False

    def test_tolerance_override(self):
        items = [_line(amount=17500.02)]
        result = ge.run_gate(_bulk_set(items=items), tolerance=0.05)
        assert _status(result, "G4") == GateStatus.PASS

    def test_line_amount_half_cent_short(self):
        items = [_line(amount=17499.995)]
        result = ge.run_gate(_bulk_set(items=items))
        assert _status(result, "G4") == GateStatus.PASS

    def test_total_within_tolerance(self):
        result = ge.run_gate(_bulk_set(total=17500.009))
        assert _status(result, "G4") == GateStatus.PASS

    def test_total_half_cent_short(self):
        result = ge.run_gate(_bulk_set(total=17499.995))
        assert _status(result, "G4") == GateStatus.PASS

    def test_total_beyond_tolerance(self):
        result = ge.run_gate(_bulk_set(total=17500.02))
        assert _status(result, "G4") == GateStatus.FAIL
        assert "declared total" in _details(result, "G4")
        assert result.passed is False

    def test_declared_total_mismatch(self):
        result = ge.run_gate(_bulk_set(total=18000))
        assert _status(result, "G4") == GateStatus.FAIL
        assert "declared total" in _details(result, "G4")

    def test_hs_code_too_short(self):
        result = ge.run_gate(_bulk_set(invoice={"hs_code": "330"}))
        assert _status(result, "G5") == GateStatus.FAIL
        assert result.passed is False

    def test_hs_code_with_dots(self):
        result = ge.run_gate(_bulk_set(invoice={"hs_code": "3304.99"}))
        assert _status(result, "G5") == GateStatus.PASS

    def test_hs_code_missing(self):
        result = ge.run_gate(_bulk_set(invoice={"hs_code": None}))
        assert _status(result, "G5") == GateStatus.FAIL

    def test_compliance_pending(self):
        packs = [{"country": "JP", "items": [
            {"item": "Japanese full ingredient labeling", "status": "pending"},
            {"item": "Phenoxyethanol at or below 1%", "status": "fail"},
        ]}]
        result = ge.run_gate(_bulk_set(rulepacks=packs))
        assert _status(result, "G6") == GateStatus.FAIL
        assert "JP: 2" in _details(result, "G6")

    def test_compliance_missing_needs_confirm(self):
        documents = [d for d in _bulk_set()
                     if d.doc_key != docs.DOC_COMPLIANCE_SNAPSHOT]
        result = ge.run_gate(documents)
        assert _status(result, "G6") == GateStatus.NEED_USER_CONFIRM
        assert result.passed is True

    def test_sample_prices_unchanged(self):
        result = ge.run_gate(_bulk_set(sample_items=[_line()]))
        assert _status(result, "G7") == GateStatus.PASS

    def test_sample_price_change_reported(self):
        items = [_line(), _line("GC-001", 100, 5.0, 500.0)]
        sample = [_line(unit_price=3.0), _line("GC-001", 10, 4.0, 40.0)]
        result = ge.run_gate(_bulk_set(items=items, sample_items=sample))
        details = _details(result, "G7")
        assert "HS-001" in details and "GC-001" in details

    def test_packing_list_sku_not_in_pi_ignored(self):
        packing = [{"sku": "HS-001", "qty": 5000}, {"sku": "XX-999", "qty": 1}]
        result = ge.run_gate(_bulk_set(packing=packing))
        assert _status(result, "G8") == GateStatus.PASS

    def test_contract_clause_missing(self):
        result = ge.run_gate(_bulk_set(contract={"terms": ["Delivery within 14 days"]}))
        assert _status(result, "G10") == GateStatus.NEED_USER_CONFIRM
        assert result.passed is True

    def test_contract_clause_korean(self):
        result = ge.run_gate(_bulk_set(contract={"terms": ["준거법: 대한민국 법"]}))
        assert _status(result, "G10") == GateStatus.PASS

    def test_contract_clause_object(self):
        terms = [{"clause": "Any CLAIM must be raised within 14 days"}]
        result = ge.run_gate(_bulk_set(contract={"terms": terms}))
        assert _status(result, "G10") == GateStatus.PASS


# =========================================================================
# MALFORMED INPUT
# =========================================================================
class TestGateMalformedInput:
    """Tolerated gaps versus evaluation errors."""

    def test_missing_items_and_fields_tolerated(self):
        documents = [
            DocumentInstance(docs.DOC_FINAL_PI, {"items": None}),
            DocumentInstance(docs.DOC_SALES_CONTRACT, None),
            DocumentInstance(docs.DOC_PACKING_LIST, {}),
        ]
        result = ge.run_gate(documents)
        assert len(result.results) == 10
        assert _status(result, "G4") == GateStatus.PASS

    def test_non_numeric_values_tolerated(self):
        items = [{"sku": "HS-001", "qty": "n/a", "unit_price": None, "amount": 0}]
        result = ge.run_gate(_bulk_set(items=items, total=0))
        assert _status(result, "G4") == GateStatus.PASS

    def test_nan_amounts_fail(self):
        documents = _bulk_set()
        documents[0].fields = json.loads(
            '{"items": [{"sku": "HS-001", "qty": 5000, "unit_price": 3.5, '
            '"amount": NaN}], "total_amount": NaN}')
        result = ge.run_gate(documents)
        assert _status(result, "G4") == GateStatus.FAIL
        assert result.passed is False

    def test_nan_string_amount_fails(self):
        result = ge.run_gate(_bulk_set(items=[_line(amount="nan")], total=17500.0))
        assert _status(result, "G4") == GateStatus.FAIL
        assert "HS-001" in _details(result, "G4")

    def test_nan_string_total_fails(self):
        result = ge.run_gate(_bulk_set(total="nan"))
        assert _status(result, "G4") == GateStatus.FAIL
        assert "declared total" in _details(result, "G4")

    def test_infinite_amount_fails(self):
        result = ge.run_gate(_bulk_set(items=[_line(amount=float("inf"))],
                                       total=17500.0))
        assert _status(result, "G4") == GateStatus.FAIL

    def test_non_object_line_item_raises(self):
        documents = _bulk_set()
        documents[0].fields["items"] = ["HS-001 x 5000"]
        with pytest.raises(GateEvaluationError) as exc_info:
            ge.run_gate(documents)
        assert exc_info.value.check_id == "G4"
        assert isinstance(exc_info.value.__cause__, TypeError)

    def test_non_object_fields_raises(self):
        with pytest.raises(GateEvaluationError) as exc_info:
            ge.run_gate([DocumentInstance(docs.DOC_FINAL_PI, "not a dict")])
        assert exc_info.value.check_id == "input"


# =========================================================================
# RECONCILIATION
# =========================================================================
def _values(currency="USD", incoterms="FOB", payment_terms="T/T 30/70",
            lead_time=14, moq=500, skus=None):
    return DocumentValues(
        currency=currency, incoterms=incoterms, payment_terms=payment_terms,
        lead_time=lead_time, moq=moq,
        sku_prices=skus if skus is not None else
        {"HS-001": {"qty": 100, "unit_price": 4.5, "amount": 450.0}},
    )


class TestExtraction:
    """Template data to comparable values."""

    def test_extract(self):
        data = {
            "trade": {"currency": "USD", "incoterms": "CIF", "moq": 500},
            "skus": [{"sku": "HS-001", "qty": 100, "unit_price": 4.5, "amount": 450},
                     {"sku": None, "qty": 1}],
        }
        values = xd.extract_comparable_values("contract", data)
        assert values.incoterms == "CIF"
        assert values.payment_terms is None
        assert values.sku_prices == {
            "HS-001": {"qty": 100, "unit_price": 4.5, "amount": 450}}

    def test_unknown_role(self):
        with pytest.raises(ValueError):
            xd.extract_comparable_values("invoice", {})

    def test_fields_to_template_data(self):
        data = xd.template_data_from_fields({
            "incoterms": "FOB",
            "products": [{"sku": "GC-001", "unit_price": 5.2}],
        })
        assert data["trade"]["incoterms"] == "FOB"
        assert data["skus"][0]["sku"] == "GC-001"


class TestCrossDocumentValidation:
    """validate_cross_document and summarize_warnings."""

    def test_single_document_no_warnings(self):
        assert xd.validate_cross_document({"pi": _values(incoterms="CIF")}) == []
        assert xd.validate_cross_document(
            {"pi": _values(), "contract": None}) == []

    def test_consistent_documents(self):
        by_role = {"pi": _values(), "contract": _values(), "catalog": _values()}
        assert xd.validate_cross_document(by_role) == []

    def test_incoterms_mismatch(self):
        warnings = xd.validate_cross_document(
            {"pi": _values(), "contract": _values(incoterms="CIF")})
        assert len(warnings) == 1
        w = warnings[0]
        assert w.id == "incoterms_mismatch"
        assert w.documents == ["pi", "contract"]
        assert w.values == {"pi": "FOB", "contract": "CIF"}

    def test_empty_values_not_compared(self):
        warnings = xd.validate_cross_document(
            {"pi": _values(), "catalog": _values(incoterms=None, payment_terms="")})
        assert warnings == []

    def test_lead_time_compared_as_text(self):
        warnings = xd.validate_cross_document(
            {"pi": _values(lead_time=14), "contract": _values(lead_time="14")})
        assert warnings == []

    def test_sku_price_mismatch(self):
        contract_skus = {"HS-001": {"qty": 100, "unit_price": 4.6, "amount": 450.0}}
        warnings = xd.validate_cross_document(
            {"pi": _values(), "contract": _values(skus=contract_skus)})
        assert [w.id for w in warnings] == ["unit_price_mismatch_HS-001"]
        assert warnings[0].field == "HS-001.unit_price"

    def test_sku_within_tolerance(self):
        contract_skus = {"HS-001": {"qty": 100, "unit_price": 4.505, "amount": 450.0}}
        warnings = xd.validate_cross_document(
            {"pi": _values(), "contract": _values(skus=contract_skus)})
        assert warnings == []

    def test_sku_nan_price_reported(self):
        pi_skus = {"HS-001": {"qty": 100, "unit_price": float("nan"), "amount": 450.0}}
        warnings = xd.validate_cross_document(
            {"pi": _values(skus=pi_skus), "contract": _values()})
        assert [w.id for w in warnings] == ["unit_price_mismatch_HS-001"]

    def test_sku_only_on_one_side_ignored(self):
        contract_skus = {"GC-001": {"qty": 1, "unit_price": 1, "amount": 1}}
        warnings = xd.validate_cross_document(
            {"pi": _values(), "contract": _values(skus=contract_skus)})
        assert warnings == []

    def test_catalog_skus_not_compared(self):
        catalog_skus = {"HS-001": {"qty": None, "unit_price": 9.9, "amount": None}}
        warnings = xd.validate_cross_document(
            {"pi": _values(), "catalog": _values(skus=catalog_skus)})
        assert warnings == []

    def test_summary(self):
        warnings = xd.validate_cross_document({
            "pi": _values(),
            "contract": _values(currency="EUR", moq=1000,
                                skus={"HS-001": {"qty": 90, "unit_price": 4.5,
                                                 "amount": 405.0}}),
        })
        summary = xd.summarize_warnings(warnings)
        assert summary["total_warnings"] == 4
        assert summary["critical_count"] == 1
        assert summary["fields"] == ["currency", "moq", "HS-001"]


class TestUnify:
    """unify_values is pure and resolves the chosen field."""

    def test_unify_resolves_warning(self):
        by_role = {"pi": _values(), "contract": _values(incoterms="CIF")}
        unified = xd.unify_values(by_role, "incoterms", "contract")
        assert unified["pi"].incoterms == "CIF"
        assert xd.validate_cross_document(unified) == []

    def test_input_untouched(self):
        by_role = {"pi": _values(), "contract": _values(incoterms="CIF")}
        unified = xd.unify_values(by_role, "incoterms", "contract")
        unified["pi"].sku_prices["HS-001"]["qty"] = 1
        assert by_role["pi"].incoterms == "FOB"
        assert by_role["pi"].sku_prices["HS-001"]["qty"] == 100

    def test_missing_source_is_noop_copy(self):
        by_role = {"pi": _values(), "catalog": None}
        unified = xd.unify_values(by_role, "currency", "contract")
        assert unified["pi"] == by_role["pi"]
        assert unified["pi"] is not by_role["pi"]
        assert unified["catalog"] is None

    def test_invalid_field(self):
        with pytest.raises(ValueError):
            xd.unify_values({"pi": _values()}, "qty", "pi")
