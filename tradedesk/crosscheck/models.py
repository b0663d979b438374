#!/usr/bin/env python3
# CUI // SP-PROPIN
# Controlled by: TradeDesk Portal
# CUI Category: PROPIN (Proprietary Business Information)
# Distribution: D
# POC: TradeDesk System Administrator
"""Cross-check result types shared by the gate engine and reconciliation.

Gate checks produce a three-state outcome.  PASS means the invariant holds,
FAIL means it is definitely violated, and NEED_USER_CONFIRM means it cannot
be decided automatically (a comparison document is missing, or a difference
is plausible but must be acknowledged).
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class GateSeverity(str, Enum):
    HIGH = "HIGH"
    MED = "MED"
    LOW = "LOW"


class GateStatus(str, Enum):
    PASS = "PASS"
    FAIL = "FAIL"
    NEED_USER_CONFIRM = "NEED_USER_CONFIRM"


class GateRegistryError(RuntimeError):
    """Raised at import when the check registry is misconfigured."""


class GateEvaluationError(RuntimeError):
    """Raised when a check's evaluation fails on the given document set.

    The original exception is chained as ``__cause__``.
    """

    def __init__(self, check_id: str, message: str):
        super().__init__(f"Gate check {check_id} could not be evaluated: {message}")
        self.check_id = check_id


@dataclass(frozen=True)
class CheckOutcome:
    """Result of evaluating one check against a document set."""
    status: GateStatus
    details: Optional[str] = None

    @classmethod
    def ok(cls, details: Optional[str] = None) -> "CheckOutcome":
        return cls(GateStatus.PASS, details)

    @classmethod
    def fail(cls, details: str) -> "CheckOutcome":
        return cls(GateStatus.FAIL, details)

    @classmethod
    def confirm(cls, details: str) -> "CheckOutcome":
        return cls(GateStatus.NEED_USER_CONFIRM, details)


@dataclass(frozen=True)
class GateCheckResult:
    """One row of a gate run: the check definition joined with its outcome."""
    id: str
    title: str
    title_en: str
    severity: GateSeverity
    rule: str
    status: GateStatus
    fix_action_label: str
    details: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "title_en": self.title_en,
            "severity": self.severity.value,
            "rule": self.rule,
            "status": self.status.value,
            "fix_action_label": self.fix_action_label,
            "details": self.details,
        }


@dataclass(frozen=True)
class GateResult:
    """Aggregate verdict of one gate run."""
    passed: bool
    passed_checks: int
    required_checks: int
    results: List[GateCheckResult] = field(default_factory=list)

    @property
    def blocking(self) -> List[GateCheckResult]:
        return [r for r in self.results if r.status == GateStatus.FAIL]

    @property
    def needs_confirmation(self) -> List[GateCheckResult]:
        return [r for r in self.results
                if r.status == GateStatus.NEED_USER_CONFIRM]

    def to_dict(self) -> dict:
        return {
            "passed": self.passed,
            "passed_checks": self.passed_checks,
            "required_checks": self.required_checks,
            "results": [r.to_dict() for r in self.results],
        }


@dataclass
class DocumentValues:
    """Trade-term values of one document that take part in reconciliation."""
    currency: Optional[str] = None
    incoterms: Optional[str] = None
    payment_terms: Optional[str] = None
    lead_time: Any = None
    moq: Optional[int] = None
    sku_prices: Dict[str, Dict[str, float]] = field(default_factory=dict)


@dataclass(frozen=True)
class CrossDocumentWarning:
    """A disagreement between documents on one field."""
    id: str
    field: str
    message: str
    documents: List[str]
    values: Dict[str, Any]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "field": self.field,
            "message": self.message,
            "documents": list(self.documents),
            "values": dict(self.values),
        }
