#!/usr/bin/env python3
# CUI // SP-PROPIN
# Controlled by: TradeDesk Portal
# CUI Category: PROPIN
"""Per-country cosmetics compliance rule packs.

A rule pack is the per-country checklist embedded in a compliance snapshot
document.  Each item carries a status of pass / warn / fail / pending;
pending and fail items are what the cross-check gate treats as open actions.

Usage:
    python tradedesk/compliance/rule_packs.py --countries US,JP,EU --json
"""

import argparse
import copy
import json

VALID_ITEM_STATUSES = ("pass", "warn", "fail", "pending")

# Statuses that still require action before bulk shipment
OPEN_STATUSES = ("pending", "fail")

COMMON_ITEMS = [
    {"item": "INCI ingredient list in English",
     "reference": "EU 1223/2009, 21 CFR 701.3",
     "note": "Confirm INCI names in descending order of concentration"},
    {"item": "Country of origin marking",
     "reference": "Customs Act, FTC labeling rules",
     "note": "Made in Korea on outer and inner packaging"},
]

COUNTRY_ITEMS = {
    "US": [
        {"item": "FDA MoCRA facility and product listing",
         "reference": "MoCRA 2022", "note": "Check FDA Cosmetics Direct"},
        {"item": "Drug vs cosmetic classification",
         "reference": "21 CFR 201", "note": "Review efficacy claims"},
        {"item": "Warning statements",
         "reference": "21 CFR 740", "note": "Add required warnings to label"},
    ],
    "JP": [
        {"item": "Marketing authorization holder (import licence)",
         "reference": "PMD Act", "note": "Confirm local partner licence"},
        {"item": "Japanese full ingredient labeling",
         "reference": "MHLW labeling standard", "note": "Translate ingredient list"},
        {"item": "Phenoxyethanol at or below 1%",
         "reference": "MHLW preservative limits", "note": "Verify from CoA"},
    ],
    "EU": [
        {"item": "CPNP notification",
         "reference": "EU 1223/2009 Art.13", "note": "Notify before placing on market"},
        {"item": "Responsible Person appointed",
         "reference": "EU 1223/2009 Art.4", "note": "RP contract signed"},
        {"item": "Product Information File",
         "reference": "EU 1223/2009 Art.11", "note": "CPSR and stability data"},
    ],
    "CN": [
        {"item": "NMPA filing for general cosmetics",
         "reference": "CSAR 2021", "note": "Appoint domestic responsible agent"},
        {"item": "Chinese label",
         "reference": "GB 5296.3", "note": "Chinese ingredient list and usage"},
    ],
}

DEFAULT_COUNTRY_ITEMS = [
    {"item": "Local cosmetics regulation review",
     "reference": "Country cosmetics regulation", "note": "Ask local partner"},
]


def default_rule_pack_items(country):
    """Return the default checklist for a country, every item pending."""
    items = COMMON_ITEMS + COUNTRY_ITEMS.get(country.upper(), DEFAULT_COUNTRY_ITEMS)
    return [dict(entry, status="pending") for entry in items]


def build_rule_packs(countries):
    """Build the rulepacks list embedded in a compliance snapshot."""
    return [
        {"country": c.upper(), "items": default_rule_pack_items(c)}
        for c in countries
    ]


def open_items(rule_pack):
    """Items of one rule pack that are still pending or failed."""
    return [
        item for item in (rule_pack.get("items") or [])
        if isinstance(item, dict) and item.get("status") in OPEN_STATUSES
    ]


def summarize_rule_packs(rulepacks):
    """Count item statuses per country and overall."""
    by_country = {}
    totals = {s: 0 for s in VALID_ITEM_STATUSES}
    for rp in rulepacks or []:
        counts = {s: 0 for s in VALID_ITEM_STATUSES}
        for item in rp.get("items") or []:
            status = item.get("status")
            if status in counts:
                counts[status] += 1
                totals[status] += 1
        by_country[rp.get("country", "?")] = counts

    return {
        "countries": len(by_country),
        "by_country": by_country,
        "totals": totals,
        "open_actions": totals["pending"] + totals["fail"],
        "ready": (totals["pending"] + totals["fail"]) == 0,
    }


def set_item_status(rulepacks, country, item_name, status, note=None):
    """Return a copy of rulepacks with one item's status changed.

    Raises:
        ValueError: status is not a valid item status, or the country/item
            pair does not exist.
    """
    if status not in VALID_ITEM_STATUSES:
        raise ValueError(f"Invalid rule item status: {status}")

    updated = copy.deepcopy(rulepacks or [])
    for rp in updated:
        if rp.get("country", "").upper() != country.upper():
            continue
        for item in rp.get("items") or []:
            if item.get("item") == item_name:
                item["status"] = status
                if note is not None:
                    item["note"] = note
                return updated
    raise ValueError(f"No rule item '{item_name}' for country {country}")


def main():
    parser = argparse.ArgumentParser(description="TradeDesk compliance rule packs")
    parser.add_argument("--countries", required=True,
                        help="Comma-separated country codes, e.g. US,JP,EU")
    parser.add_argument("--json", action="store_true", help="JSON output")
    args = parser.parse_args()

    countries = [c.strip() for c in args.countries.split(",") if c.strip()]
    packs = build_rule_packs(countries)
    result = {"rulepacks": packs, "summary": summarize_rule_packs(packs)}

    if args.json:
        print(json.dumps(result, indent=2, ensure_ascii=False))
    else:
        for rp in packs:
            print(f"{rp['country']}:")
            for item in rp["items"]:
                print(f"  [{item['status']:7s}] {item['item']}")


if __name__ == "__main__":
    main()
