"""
Constraint configuration management.

Loads stage constraints from YAML files and provides a builder for
declaring them in code.
"""

from pathlib import Path
from typing import Any, Callable

import yaml
from pydantic import ValidationError

from livetables.core.errors import ConstraintConfigError
from livetables.core.models import Constraint, ViolationPolicy


class ConstraintConfigLoader:
    """
    Loads stage constraints from a YAML configuration file.

    Expected YAML format:
    ```yaml
    stages:
      quality_retail:
        constraints:
          - name: has_customer
            type: required_field
            field: CustomerID
            on_violation: drop
          - name: valid_date_time
            type: type_check
            field: InvoiceDatetime
            params:
              expected_type: timestamp
              nullable: false
            on_violation: drop
    ```
    """

    def __init__(self, config_path: str | Path):
        """
        Initialize the loader.

        Args:
            config_path: Path to the YAML configuration file

        Raises:
            FileNotFoundError: If the file does not exist
        """
        self.config_path = Path(config_path)
        if not self.config_path.exists():
            raise FileNotFoundError(f"Constraint configuration file not found: {config_path}")

    def load(self) -> dict[str, list[Constraint]]:
        """
        Load constraints for every configured stage.

        Returns:
            Mapping of stage name to its constraint list

        Raises:
            ConstraintConfigError: If the YAML is invalid or a constraint is malformed
        """
        with open(self.config_path) as f:
            try:
                config = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ConstraintConfigError(f"Invalid YAML in {self.config_path}: {e}") from e

        if not config or "stages" not in config:
            raise ConstraintConfigError("Configuration file must contain 'stages' section")

        stages: dict[str, list[Constraint]] = {}
        for stage_name, stage_config in config["stages"].items():
            definitions = (stage_config or {}).get("constraints", [])
            if not isinstance(definitions, list):
                raise ConstraintConfigError(f"Constraints for stage '{stage_name}' must be a list")
            stages[stage_name] = [
                self._parse_constraint(stage_name, definition, idx)
                for idx, definition in enumerate(definitions)
            ]

        return stages

    def load_stage(self, stage_name: str) -> list[Constraint]:
        """Load constraints for one stage (empty list if the stage is not configured)."""
        return self.load().get(stage_name, [])

    def _parse_constraint(self, stage_name: str, definition: dict[str, Any], idx: int) -> Constraint:
        if not isinstance(definition, dict):
            raise ConstraintConfigError(f"Constraint #{idx} of stage '{stage_name}' must be a mapping")
        if "type" not in definition:
            raise ConstraintConfigError(f"Constraint #{idx} of stage '{stage_name}' is missing 'type'")
        if "field" not in definition:
            raise ConstraintConfigError(f"Constraint #{idx} of stage '{stage_name}' is missing 'field'")

        rule_type = definition["type"]
        field_name = definition["field"]
        name = definition.get("name", f"{field_name}_{rule_type}_{idx}")

        policy = definition.get("on_violation", "drop")
        try:
            policy = ViolationPolicy(str(policy).lower())
        except ValueError:
            raise ConstraintConfigError(
                f"Invalid policy '{policy}' for constraint '{name}'. Must be one of: "
                f"{', '.join(p.value for p in ViolationPolicy)}"
            )

        try:
            return Constraint(
                name=name,
                rule_type=rule_type,
                field_name=field_name,
                parameters=definition.get("params", definition.get("parameters", {})) or {},
                policy=policy,
                enabled=definition.get("enabled", True),
            )
        except ValidationError as e:
            raise ConstraintConfigError(f"Invalid constraint '{name}' on stage '{stage_name}': {e}") from e


class ConstraintConfigBuilder:
    """
    Programmatically build constraint lists (for pipeline assembly and tests).
    """

    def __init__(self):
        self.constraints: list[Constraint] = []

    def _add(
        self,
        name: str,
        rule_type: str,
        field_name: str,
        parameters: dict[str, Any],
        policy: ViolationPolicy | str,
    ) -> "ConstraintConfigBuilder":
        self.constraints.append(Constraint(
            name=name,
            rule_type=rule_type,
            field_name=field_name,
            parameters=parameters,
            policy=ViolationPolicy(policy),
        ))
        return self

    def add_required_field(
        self,
        field_name: str,
        name: str | None = None,
        policy: ViolationPolicy | str = ViolationPolicy.DROP,
        allow_empty_string: bool = False,
    ) -> "ConstraintConfigBuilder":
        """Add an IS NOT NULL constraint."""
        return self._add(
            name or f"{field_name}_required",
            "required_field",
            field_name,
            {"allow_empty_string": allow_empty_string},
            policy,
        )

    def add_type_check(
        self,
        field_name: str,
        expected_type: str,
        name: str | None = None,
        policy: ViolationPolicy | str = ViolationPolicy.DROP,
        nullable: bool = True,
    ) -> "ConstraintConfigBuilder":
        """Add a castability constraint."""
        return self._add(
            name or f"{field_name}_type_check",
            "type_check",
            field_name,
            {"expected_type": expected_type, "nullable": nullable},
            policy,
        )

    def add_range(
        self,
        field_name: str,
        min_value: float | None = None,
        max_value: float | None = None,
        name: str | None = None,
        policy: ViolationPolicy | str = ViolationPolicy.DROP,
    ) -> "ConstraintConfigBuilder":
        """Add a numeric range constraint."""
        params = {}
        if min_value is not None:
            params["min"] = min_value
        if max_value is not None:
            params["max"] = max_value
        return self._add(name or f"{field_name}_range", "range", field_name, params, policy)

    def add_regex(
        self,
        field_name: str,
        pattern: str,
        name: str | None = None,
        policy: ViolationPolicy | str = ViolationPolicy.DROP,
    ) -> "ConstraintConfigBuilder":
        """Add a regex constraint."""
        return self._add(name or f"{field_name}_regex", "regex", field_name, {"pattern": pattern}, policy)

    def add_custom(
        self,
        field_name: str,
        predicate: Callable[[Any, Any], bool],
        name: str | None = None,
        policy: ViolationPolicy | str = ViolationPolicy.DROP,
    ) -> "ConstraintConfigBuilder":
        """Add a constraint backed by an arbitrary predicate."""
        return self._add(name or f"{field_name}_custom", "custom", field_name, {"predicate": predicate}, policy)

    def build(self) -> list[Constraint]:
        return list(self.constraints)
