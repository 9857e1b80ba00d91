"""ComplianceEngine: runs every rule against a canonical record.

Rules are independent and cheap, so they run sequentially in one pass.
A rule that raises does not stop the pass; it is reported as a WARNING
finding on the "System" field and the remaining rules still run.
"""

import logging
from collections.abc import Sequence

from pedimento.compliance.policy import DEFAULT_POLICY, CompliancePolicy
from pedimento.compliance.rules import DEFAULT_RULES, Rule
from pedimento.schemas.pedimento import PedimentoRecord, Severity, ValidationFinding

logger = logging.getLogger("pedimento.compliance")


class ComplianceEngine:
    def __init__(self, policy: CompliancePolicy | None = None, rules: Sequence[Rule] | None = None):
        self.policy = policy or DEFAULT_POLICY
        self.rules: tuple[Rule, ...] = tuple(rules) if rules is not None else DEFAULT_RULES

    def evaluate(self, record: PedimentoRecord) -> list[ValidationFinding]:
        """Run all rules and return the complete finding list. Does not touch the record."""
        findings: list[ValidationFinding] = []
        for rule in self.rules:
            name = getattr(rule, "__name__", repr(rule))
            try:
                findings.extend(rule(record, self.policy))
            except Exception as e:
                logger.exception("Compliance rule %s failed", name)
                findings.append(ValidationFinding(
                    severity=Severity.WARNING,
                    field="System",
                    expected=None,
                    actual=type(e).__name__,
                    message=f"Rule {name} could not be evaluated: {e}",
                ))
        return findings

    def validate(self, record: PedimentoRecord) -> list[ValidationFinding]:
        """Full validation pass: replaces the record's findings in one step."""
        findings = self.evaluate(record)
        record.replace_findings(findings)

        counts = record.findings_by_severity()
        logger.info(
            "Validated pedimento %s (policy %s): %d errors, %d warnings, %d info",
            record.header.pedimento_no or "-",
            self.policy.version,
            counts["ERROR"],
            counts["WARNING"],
            counts["INFO"],
        )
        return findings
