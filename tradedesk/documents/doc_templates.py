#!/usr/bin/env python3
# CUI // SP-PROPIN
# Controlled by: TradeDesk Portal
# CUI Category: PROPIN
"""Document role metadata, stage presets and default field bags.

Default field bags are mutually consistent: a bulk-order set generated from
the same context and company settings passes every gate check except the
compliance snapshot, whose rule-pack items start out pending.

Usage:
    python tradedesk/documents/doc_templates.py --list [--json]
    python tradedesk/documents/doc_templates.py --defaults DOC_FINAL_PI --countries US,JP --json
"""

import argparse
import json
from datetime import datetime, timezone

from tradedesk.compliance.rule_packs import build_rule_packs
from tradedesk.documents import models as m

DOC_METADATA = {
    m.DOC_BRAND_DECK: {
        "title": "Company/Brand Deck", "title_kr": "브랜드 소개서",
        "description": "Company and brand introduction",
    },
    m.DOC_PRODUCT_CATALOG: {
        "title": "Product Catalog", "title_kr": "제품 카탈로그",
        "description": "Product line-up with unit prices and MOQ",
    },
    m.DOC_COMPLIANCE_SNAPSHOT: {
        "title": "Compliance Snapshot", "title_kr": "수출 준비 요약",
        "description": "Per-country regulatory checklist",
    },
    m.DOC_OUTREACH_EMAIL: {
        "title": "Buyer Outreach Message", "title_kr": "바이어 메시지",
        "description": "First contact email draft",
    },
    m.DOC_SAMPLE_PI: {
        "title": "Sample Proforma Invoice", "title_kr": "샘플 PI",
        "description": "Quotation for the sample shipment",
    },
    m.DOC_SAMPLE_PACKING_LIST: {
        "title": "Sample Packing List", "title_kr": "샘플 포장명세서",
        "description": "Packing details for the sample shipment",
    },
    m.DOC_SAMPLE_EMAIL: {
        "title": "Sample Follow-up Email", "title_kr": "샘플 이메일",
        "description": "Sample dispatch notice",
    },
    m.DOC_FINAL_PI: {
        "title": "Final PI", "title_kr": "최종 PI",
        "description": "Binding quotation for the bulk order",
    },
    m.DOC_SALES_CONTRACT: {
        "title": "Sales Contract", "title_kr": "판매 계약서",
        "description": "Sales contract with dispute terms",
    },
    m.DOC_COMMERCIAL_INVOICE: {
        "title": "Commercial Invoice", "title_kr": "상업 송장",
        "description": "Invoice for customs clearance",
    },
    m.DOC_PACKING_LIST: {
        "title": "Packing List (Final)", "title_kr": "포장명세서",
        "description": "Final packing details",
    },
    m.DOC_SHIPPING_INSTRUCTIONS: {
        "title": "Shipping Instructions", "title_kr": "선적 지시서",
        "description": "Shipment details for the forwarder",
    },
    m.DOC_CROSS_CHECK_REPORT: {
        "title": "Cross-document Error Check", "title_kr": "실수 체크 리포트",
        "description": "Cross-document mismatch report",
    },
}

DOC_KEYS_BY_PRESET = {
    "first_proposal": [
        m.DOC_BRAND_DECK,
        m.DOC_PRODUCT_CATALOG,
        m.DOC_COMPLIANCE_SNAPSHOT,
        m.DOC_OUTREACH_EMAIL,
    ],
    "sample": [
        m.DOC_SAMPLE_PI,
        m.DOC_SAMPLE_PACKING_LIST,
        m.DOC_SAMPLE_EMAIL,
    ],
    "bulk_order": [
        m.DOC_FINAL_PI,
        m.DOC_SALES_CONTRACT,
        m.DOC_COMMERCIAL_INVOICE,
        m.DOC_PACKING_LIST,
        m.DOC_SHIPPING_INSTRUCTIONS,
        m.DOC_CROSS_CHECK_REPORT,
    ],
}

DEFAULT_CONTEXT = {
    "target_countries": [],
    "language": "en",
    "currency": "USD",
    "incoterms": "FOB",
    "payment_terms": "T/T 30/70",
}

DEFAULT_COMPANY = {
    "company_name": "K-Beauty Co., Ltd.",
    "company_name_kr": "케이뷰티 주식회사",
    "contact_name": "Export Manager",
    "contact_email": "export@kbeauty.com",
    "contact_phone": "+82-2-1234-5678",
    "address": "Seoul, South Korea",
    "moq": 500,
    "lead_time": 14,
}

DEFAULT_LINE_ITEMS = [
    {"sku": "HS-001", "name": "Hydra Serum 30ml", "qty": 100,
     "unit_price": 4.5, "amount": 450},
    {"sku": "GC-001", "name": "Glow Cream 50ml", "qty": 100,
     "unit_price": 5.2, "amount": 520},
]

DEFAULT_HS_CODE = "330499"
DEFAULT_ORIGIN = "Republic of Korea"


def _stamp():
    return datetime.now(timezone.utc).strftime("%y%m%d%H%M%S")


def _line_items():
    return [dict(item) for item in DEFAULT_LINE_ITEMS]


def _total(items):
    return round(sum(i["amount"] for i in items), 2)


def _base_fields(context, company):
    fields = {}
    for key, default in DEFAULT_CONTEXT.items():
        fields[key] = context.get(key) or default
    fields["target_countries"] = list(fields["target_countries"])
    for key, default in DEFAULT_COMPANY.items():
        fields[key] = company.get(key) or default
    return fields


def generate_default_fields(doc_key, context=None, company=None):
    """Build the initial field bag for a new document of ``doc_key``.

    Args:
        doc_key: Document role name.
        context: Project context (target_countries, currency, incoterms,
            payment_terms, language). Missing keys use defaults.
        company: Seller company settings. Missing keys use defaults.

    Returns:
        A fresh dict; callers may mutate it freely.
    """
    base = _base_fields(context or {}, company or {})

    if doc_key == m.DOC_BRAND_DECK:
        return dict(
            base,
            sections=["Company", "Brand philosophy", "Line-up",
                      "Certifications", "Export record", "Contact"],
            highlights=["CGMP / ISO 22716 certified manufacturing"],
        )

    if doc_key == m.DOC_PRODUCT_CATALOG:
        return dict(
            base,
            categories=["Skincare"],
            products=[
                {"sku": i["sku"], "name": i["name"], "category": "Skincare",
                 "unit_price": i["unit_price"], "moq": base["moq"]}
                for i in DEFAULT_LINE_ITEMS
            ],
        )

    if doc_key == m.DOC_COMPLIANCE_SNAPSHOT:
        return dict(base, rulepacks=build_rule_packs(base["target_countries"]))

    if doc_key in (m.DOC_SAMPLE_PI, m.DOC_FINAL_PI):
        items = _line_items()
        return dict(
            base,
            pi_number=f"PI-{_stamp()}",
            validity_days=30,
            port="Busan, Korea",
            items=items,
            total_amount=_total(items),
        )

    if doc_key in (m.DOC_SAMPLE_PACKING_LIST, m.DOC_PACKING_LIST):
        items = [
            {"sku": i["sku"], "name": i["name"], "qty": i["qty"],
             "cartons": 5, "gross_weight": 15, "net_weight": 12}
            for i in DEFAULT_LINE_ITEMS
        ]
        return dict(
            base,
            items=items,
            total_cartons=sum(i["cartons"] for i in items),
            dimensions="60x40x50cm",
        )

    if doc_key == m.DOC_SALES_CONTRACT:
        items = _line_items()
        return dict(
            base,
            contract_number=f"SC-{_stamp()}",
            effective_date=datetime.now(timezone.utc).strftime("%Y-%m-%d"),
            port="Busan, Korea",
            items=items,
            total_amount=_total(items),
            terms=[
                "품질 보증: 제조일로부터 24개월",
                "클레임 기한: 수령 후 14일 이내",
                "준거법: 대한민국 법",
            ],
        )

    if doc_key == m.DOC_COMMERCIAL_INVOICE:
        items = _line_items()
        return dict(
            base,
            invoice_number=f"INV-{_stamp()}",
            hs_code=DEFAULT_HS_CODE,
            origin=DEFAULT_ORIGIN,
            items=items,
            total_amount=_total(items),
        )

    return base


def main():
    parser = argparse.ArgumentParser(description="TradeDesk document templates")
    parser.add_argument("--list", action="store_true", help="List document roles")
    parser.add_argument("--defaults", metavar="DOC_KEY",
                        help="Print default fields for a role")
    parser.add_argument("--countries", default="", help="Comma-separated targets")
    parser.add_argument("--json", action="store_true")
    args = parser.parse_args()

    if args.defaults:
        countries = [c.strip() for c in args.countries.split(",") if c.strip()]
        result = generate_default_fields(
            args.defaults, {"target_countries": countries})
    elif args.list:
        result = {"presets": DOC_KEYS_BY_PRESET, "metadata": DOC_METADATA}
    else:
        parser.print_help()
        return

    if args.json or args.defaults:
        print(json.dumps(result, indent=2, ensure_ascii=False))
    else:
        for preset, keys in DOC_KEYS_BY_PRESET.items():
            print(f"{preset}:")
            for key in keys:
                print(f"  {key:30s} {DOC_METADATA[key]['title']}")


if __name__ == "__main__":
    main()
