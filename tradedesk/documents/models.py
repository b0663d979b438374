#!/usr/bin/env python3
# CUI // SP-PROPIN
"""Trade document data types and role keys."""

from dataclasses import dataclass, field
from typing import Any, Dict

# Roles compared by the cross-check gate
DOC_SAMPLE_PI = "DOC_SAMPLE_PI"
DOC_FINAL_PI = "DOC_FINAL_PI"
DOC_SALES_CONTRACT = "DOC_SALES_CONTRACT"
DOC_COMMERCIAL_INVOICE = "DOC_COMMERCIAL_INVOICE"
DOC_PACKING_LIST = "DOC_PACKING_LIST"
DOC_COMPLIANCE_SNAPSHOT = "DOC_COMPLIANCE_SNAPSHOT"
DOC_PRODUCT_CATALOG = "DOC_PRODUCT_CATALOG"

# Roles produced by the workflow but not compared
DOC_BRAND_DECK = "DOC_COMPANY_BRAND_DECK"
DOC_OUTREACH_EMAIL = "DOC_OUTREACH_EMAIL_DRAFT"
DOC_SAMPLE_PACKING_LIST = "DOC_SAMPLE_PACKING_LIST"
DOC_SAMPLE_EMAIL = "DOC_SAMPLE_EMAIL_DRAFT"
DOC_SHIPPING_INSTRUCTIONS = "DOC_SHIPPING_INSTRUCTIONS"
DOC_CROSS_CHECK_REPORT = "DOC_CROSS_CHECK_REPORT"

VALID_DOC_STATUSES = ("draft", "editing", "final")


@dataclass
class DocumentInstance:
    """One generated or drafted trade document within a project."""
    doc_key: str
    fields: Dict[str, Any] = field(default_factory=dict)
    id: str = ""
    project_id: str = ""
    title: str = ""
    status: str = "draft"
    version: int = 1
    created_at: str = ""
    updated_at: str = ""

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "doc_key": self.doc_key,
            "title": self.title,
            "status": self.status,
            "version": self.version,
            "fields": self.fields,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
