"""
Constraint evaluator for stage outputs.

Evaluates every constraint attached to a stage against each record, applies
the violation policy, and derives the quarantine complement of a quality gate.
"""

from dataclasses import dataclass, field
from typing import Any, Iterable, Sequence

from livetables.core.constraints import (
    BasePredicate,
    ConstraintViolation,
    CustomPredicate,
    RangePredicate,
    RegexPredicate,
    RequiredFieldPredicate,
    TypeCheckPredicate,
)
from livetables.core.errors import ConstraintConfigError, ConstraintFailure
from livetables.core.models import (
    Constraint,
    ConstraintResult,
    Record,
    ViolationPolicy,
    freeze_record,
)

FAILED_CONSTRAINTS_FIELD = "_failed_constraints"


@dataclass
class EvaluationOutcome:
    """
    Result of applying a constraint set to a batch of records.

    Attributes:
        kept: Records that make it into the stage output
        rejected: Records excluded from the output, paired with violated constraint names
        violation_counts: Violations per constraint name (drop, fail and warn)
    """

    kept: list[Record] = field(default_factory=list)
    rejected: list[tuple[Record, list[str]]] = field(default_factory=list)
    violation_counts: dict[str, int] = field(default_factory=dict)

    def _count(self, names: Iterable[str]) -> None:
        for name in names:
            self.violation_counts[name] = self.violation_counts.get(name, 0) + 1


class ConstraintEvaluator:
    """
    Applies a stage's constraints to its records.

    Constraints combine with logical AND. Evaluation order does not affect the
    keep/drop decision; all violated constraints are reported, not only the first.
    A predicate that raises for any reason (e.g. a cast failure) counts as a
    violation and never aborts the run.
    """

    PREDICATE_REGISTRY = {
        "required_field": RequiredFieldPredicate,
        "type_check": TypeCheckPredicate,
        "range": RangePredicate,
        "regex": RegexPredicate,
        "custom": CustomPredicate,
    }

    def __init__(self, constraints: Sequence[Constraint], stage_name: str = ""):
        """
        Initialize the evaluator.

        Args:
            constraints: Constraint declarations, in reporting order
            stage_name: Owning stage, used in failure messages

        Raises:
            ConstraintConfigError: If a constraint cannot be built or a name repeats
        """
        self.stage_name = stage_name
        self.constraints = [c for c in constraints if c.enabled]
        self.predicates: list[tuple[Constraint, BasePredicate]] = []
        self._build_predicates()

    def _build_predicates(self) -> None:
        seen: set[str] = set()
        for constraint in self.constraints:
            if constraint.name in seen:
                raise ConstraintConfigError(
                    f"Duplicate constraint name '{constraint.name}' on stage '{self.stage_name}'"
                )
            seen.add(constraint.name)

            predicate_class = self.PREDICATE_REGISTRY.get(constraint.rule_type)
            if not predicate_class:
                raise ConstraintConfigError(f"Unknown rule type: {constraint.rule_type}")

            try:
                predicate = predicate_class(constraint.field_name, constraint.parameters)
            except (ValueError, TypeError) as e:
                raise ConstraintConfigError(
                    f"Failed to create predicate for constraint '{constraint.name}': {e}"
                ) from e
            self.predicates.append((constraint, predicate))

    @property
    def names(self) -> list[str]:
        return [c.name for c in self.constraints]

    def validate_fields(self, available_fields: Iterable[str]) -> None:
        """
        Check that every constraint references a field the stage produces.

        Raises:
            ConstraintConfigError: If a constraint references an unknown field
        """
        available = set(available_fields)
        for constraint in self.constraints:
            if constraint.field_name not in available:
                raise ConstraintConfigError(
                    f"Constraint '{constraint.name}' on stage '{self.stage_name}' references "
                    f"unknown field '{constraint.field_name}'"
                )

    def evaluate(self, record: Record) -> ConstraintResult:
        """
        Evaluate one record against all constraints.

        Args:
            record: The record to check

        Returns:
            ConstraintResult listing every violated constraint
        """
        violated: list[str] = []
        warnings: list[str] = []
        errors: dict[str, str] = {}

        for constraint, predicate in self.predicates:
            try:
                predicate.check(record.get(constraint.field_name), record)
                continue
            except ConstraintViolation as e:
                errors[constraint.name] = e.message
            except Exception as e:
                errors[constraint.name] = f"{type(e).__name__}: {e}"

            if constraint.policy is ViolationPolicy.WARN:
                warnings.append(constraint.name)
            else:
                violated.append(constraint.name)

        return ConstraintResult(
            passed=not violated,
            violated=violated,
            warnings=warnings,
            errors=errors,
        )

    def apply(self, records: Iterable[Record]) -> EvaluationOutcome:
        """
        Apply the violation policies to a batch.

        Args:
            records: Candidate stage output

        Returns:
            EvaluationOutcome with kept and rejected rows

        Raises:
            ConstraintFailure: If a row violates a constraint with policy 'fail'
        """
        fail_names = {c.name for c in self.constraints if c.policy is ViolationPolicy.FAIL}
        outcome = EvaluationOutcome()

        for record in records:
            result = self.evaluate(record)
            outcome._count(result.violated)
            outcome._count(result.warnings)

            failed = [name for name in result.violated if name in fail_names]
            if failed:
                raise ConstraintFailure(self.stage_name, failed, dict(record))

            if result.passed:
                outcome.kept.append(record)
            else:
                outcome.rejected.append((record, result.violated))

        return outcome

    def complement(self, stage_name: str | None = None) -> "QuarantineEvaluator":
        """Return the evaluator that keeps exactly the rows this one rejects."""
        return QuarantineEvaluator(self, stage_name or f"{self.stage_name}_quarantine")

    def get_constraint_summary(self) -> dict[str, Any]:
        """Summarize the loaded constraints by rule type and policy."""
        by_type: dict[str, int] = {}
        by_policy: dict[str, int] = {}
        for constraint in self.constraints:
            by_type[constraint.rule_type] = by_type.get(constraint.rule_type, 0) + 1
            by_policy[constraint.policy.value] = by_policy.get(constraint.policy.value, 0) + 1
        return {
            "total_constraints": len(self.constraints),
            "constraints_by_type": by_type,
            "constraints_by_policy": by_policy,
        }


class QuarantineEvaluator:
    """
    Logical complement of a quality gate.

    Keeps a row when at least one of the gate's drop/fail constraints is
    violated and annotates it with the violated names. Because it is derived
    from the gate's own evaluator, every row lands in exactly one of the two
    outputs whenever the gate's constraints change.
    """

    def __init__(self, gate: ConstraintEvaluator, stage_name: str):
        self.gate = gate
        self.stage_name = stage_name

    @property
    def constraints(self) -> list[Constraint]:
        return self.gate.constraints

    def validate_fields(self, available_fields: Iterable[str]) -> None:
        self.gate.validate_fields(available_fields)

    def get_constraint_summary(self) -> dict[str, Any]:
        return {**self.gate.get_constraint_summary(), "complement_of": self.gate.stage_name}

    def apply(self, records: Iterable[Record]) -> EvaluationOutcome:
        outcome = EvaluationOutcome()

        for record in records:
            result = self.gate.evaluate(record)
            outcome._count(result.violated)

            if result.passed:
                outcome.rejected.append((record, []))
            else:
                annotated = dict(record)
                annotated[FAILED_CONSTRAINTS_FIELD] = list(result.violated)
                outcome.kept.append(freeze_record(annotated))

        return outcome
