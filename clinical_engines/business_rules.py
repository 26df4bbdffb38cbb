"""
clinical_engines.business_rules -- Content preconditions per target step.

Responsibility:
    Decide whether a record's clinical content satisfies the precondition
    for entering a target step.  Rules read ``record.content`` only, never
    workflow metadata.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - A step without a registered rule is unconditionally valid.
    - Evaluation never mutates the record.
    - A rule that raises is treated as failed (fail closed).

Built-in rules:

    target step        | precondition
    -------------------|------------------------------------------------
    doctor_review      | chief complaint present
    nurse_verify       | clinical impression present
    billing_review     | treatment plan has >= 1 medication or procedure
    insurance_process  | >= 1 ICD-10 diagnosis code
    finalized          | electronic signature present
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from clinical_engines.tracer import traced_engine
from clinical_kernel.domain.record import ClinicalContent, MedicalRecord
from clinical_kernel.domain.workflow import WorkflowStep
from clinical_kernel.logging_config import get_logger

logger = get_logger("engines.business_rules")

RulePredicate = Callable[[ClinicalContent], bool]


@dataclass(frozen=True)
class BusinessRuleResult:
    valid: bool
    message: str | None = None


_VALID = BusinessRuleResult(valid=True)


@dataclass(frozen=True)
class _Rule:
    predicate: RulePredicate
    message: str


class BusinessRuleValidator:
    """Holds per-target-step rules and evaluates them against a record."""

    def __init__(self) -> None:
        self._rules: dict[str, _Rule] = {}

    def register(self, target_step: str, predicate: RulePredicate, message: str) -> None:
        """Register (or replace) the rule for ``target_step``."""
        self._rules[str(target_step)] = _Rule(predicate, message)

    def has_rule(self, target_step: str) -> bool:
        return target_step in self._rules

    @traced_engine("business_rules", "1.0", fingerprint_fields=("target_step", "action"))
    def validate(
        self,
        record: MedicalRecord,
        target_step: str,
        action: str | None = None,
    ) -> BusinessRuleResult:
        rule = self._rules.get(target_step)
        if rule is None:
            return _VALID
        try:
            passed = bool(rule.predicate(record.content))
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "business_rule_evaluation_error",
                extra={"target_step": target_step, "error": str(exc)},
            )
            passed = False
        if passed:
            return _VALID
        return BusinessRuleResult(valid=False, message=rule.message)


def _has_text(value: str | None) -> bool:
    return bool(value and value.strip())


def _has_signature(content: ClinicalContent) -> bool:
    sig = content.electronic_signature
    return sig is not None and _has_text(sig.signed_by)


def default_business_rule_validator() -> BusinessRuleValidator:
    """Return a validator with the built-in clinical rules registered."""
    v = BusinessRuleValidator()
    v.register(
        WorkflowStep.DOCTOR_REVIEW,
        lambda c: _has_text(c.chief_complaint),
        "Chief complaint is required before doctor review",
    )
    v.register(
        WorkflowStep.NURSE_VERIFY,
        lambda c: _has_text(c.clinical_impression),
        "Doctor assessment is required before nurse verification",
    )
    v.register(
        WorkflowStep.BILLING_REVIEW,
        lambda c: not c.treatment_plan.is_empty,
        "Treatment plan with medications or procedures is required for billing",
    )
    v.register(
        WorkflowStep.INSURANCE_PROCESS,
        lambda c: any(_has_text(code) for code in c.icd10_codes),
        "ICD-10 diagnostic codes are required for insurance processing",
    )
    v.register(
        WorkflowStep.FINALIZED,
        _has_signature,
        "Electronic signature is required before finalization",
    )
    return v


def validate_business_rules(
    record: MedicalRecord,
    target_step: str,
    action: str | None = None,
) -> BusinessRuleResult:
    """Evaluate the built-in rules.  Convenience for callers without a validator."""
    return _DEFAULT.validate(record, target_step, action)


_DEFAULT = default_business_rule_validator()
