"""
Validation report models.
Violations are data, not exceptions: every validator returns the full list.
"""
from decimal import Decimal
from typing import List, Optional, Union
from pydantic import BaseModel, ConfigDict, Field

from .enums import ConstraintKind


class Violation(BaseModel):
    """A single failed check, addressed by its path in the document tree."""
    model_config = ConfigDict(frozen=True)

    path: str = Field(..., description="Dot/bracket address, e.g. Conceptos[2].Importe")
    field: str = Field(..., description="XML attribute or element name")
    constraint_kind: ConstraintKind
    message: str


class RuleViolation(Violation):
    """Requiredness or format rule failure."""


class InvariantMismatch(Violation):
    """Arithmetic consistency failure between a derived and a stored value."""
    constraint_kind: ConstraintKind = ConstraintKind.INVARIANT_MISMATCH
    expected: Optional[Decimal] = None
    actual: Optional[Decimal] = None


class ValidationReport(BaseModel):
    """Ordered violations from the rule engine followed by the invariant validator."""
    violations: List[Union[InvariantMismatch, RuleViolation]] = Field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.violations

    @property
    def rule_violations(self) -> List[RuleViolation]:
        return [v for v in self.violations if isinstance(v, RuleViolation)]

    @property
    def invariant_mismatches(self) -> List[InvariantMismatch]:
        return [v for v in self.violations if isinstance(v, InvariantMismatch)]

    def for_path(self, path: str) -> List[Violation]:
        """Violations at ``path`` or anywhere beneath it."""
        return [
            v for v in self.violations
            if v.path == path or v.path.startswith(path + ".") or v.path.startswith(path + "[")
        ]

    def __len__(self) -> int:
        return len(self.violations)
