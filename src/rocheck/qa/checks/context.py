# src/rocheck/qa/checks/context.py

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Tuple

from rocheck.core.deadline import Deadline
from rocheck.core.goals import ConstraintIndex, build_constraint_index
from rocheck.core.naming import StructureCatalog
from rocheck.core.snapshot import (
    GeometryGrid,
    PlanSnapshot,
    Severity,
    Structure,
    ValidationFinding,
)
from rocheck.qa.config import ValidationConfig, get_check_category


@dataclass(frozen=True)
class ValidationContext:
    """
    Entradas compartidas (y de sólo lectura) de todos los checks de una
    validación: snapshot, catálogo de estructuras, índice de restricciones,
    configuración y el deadline del check en curso.
    """
    snapshot: PlanSnapshot
    catalog: StructureCatalog
    constraints: ConstraintIndex
    config: ValidationConfig
    deadline: Deadline = field(default_factory=Deadline.never)

    @property
    def structures(self) -> Tuple[Structure, ...]:
        return self.catalog.structures

    @property
    def grid(self) -> Optional[GeometryGrid]:
        return self.snapshot.grid

    # Prerrequisitos: sin ellos el check no devuelve findings
    @property
    def has_structures(self) -> bool:
        return self.snapshot.structures is not None

    @property
    def has_grid(self) -> bool:
        return self.snapshot.grid is not None

    @property
    def has_plan(self) -> bool:
        return self.snapshot.goals is not None


def build_context(snapshot: PlanSnapshot, config: ValidationConfig) -> ValidationContext:
    """Clasifica estructuras y parsea goals una sola vez por validación."""
    catalog = StructureCatalog(
        snapshot.structures or (),
        snapshot.reviewed_target_ids(),
        config,
    )
    constraints = build_constraint_index(snapshot.goals, snapshot.plan_total_dose_gy)
    return ValidationContext(
        snapshot=snapshot,
        catalog=catalog,
        constraints=constraints,
        config=config,
    )


def make_finding(
    check_id: str,
    severity: Severity,
    message: str,
    is_field_result: bool = False,
) -> ValidationFinding:
    return ValidationFinding(
        category=get_check_category(check_id),
        message=message,
        severity=severity,
        is_field_result=is_field_result,
    )
