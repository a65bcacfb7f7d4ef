# src/rocheck/qa/aggregation.py

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Tuple

from rocheck.core.snapshot import Severity, ValidationFinding


def aggregate_findings(per_check: Iterable[Iterable[ValidationFinding]]) -> List[ValidationFinding]:
    """Concatena los findings de cada check respetando el orden de ejecución."""
    out: List[ValidationFinding] = []
    for findings in per_check:
        out.extend(findings)
    return out


def collapse_field_results(findings: List[ValidationFinding]) -> List[ValidationFinding]:
    """
    Colapsa una categoría cuyos findings son todos Info y todos resultados
    individuales (más de uno, p.ej. uno por estructura) en un único Info de
    resumen. El resto se deja igual y en el mismo orden.
    """
    by_cat: Dict[str, List[ValidationFinding]] = {}
    for f in findings:
        by_cat.setdefault(f.category, []).append(f)

    collapsible = {
        cat
        for cat, fs in by_cat.items()
        if len(fs) > 1
        and all(f.severity is Severity.INFO and f.is_field_result for f in fs)
    }

    out: List[ValidationFinding] = []
    emitted = set()
    for f in findings:
        if f.category not in collapsible:
            out.append(f)
            continue
        if f.category in emitted:
            continue
        emitted.add(f.category)
        out.append(ValidationFinding(
            category=f.category,
            message=f"Los {len(by_cat[f.category])} resultados individuales de {f.category} son correctos.",
            severity=Severity.INFO,
            is_field_result=True,
        ))
    return out


def count_by_severity(findings: Iterable[ValidationFinding]) -> Dict[str, int]:
    counts = {s.value: 0 for s in Severity}
    for f in findings:
        counts[f.severity.value] += 1
    return counts


def overall_status(findings: Iterable[ValidationFinding]) -> str:
    """'FAIL' si hay algún Error, 'WARN' si hay algún Warning, si no 'OK'."""
    counts = count_by_severity(findings)
    if counts[Severity.ERROR.value]:
        return "FAIL"
    if counts[Severity.WARNING.value]:
        return "WARN"
    return "OK"


# ---------------------------------------------------------
# Resultado global de una validación
# ---------------------------------------------------------

@dataclass(frozen=True)
class QAResult:
    """
    Resultado global del QA de un plan.

    Attributes
    ----------
    plan_id : str
        Identificador del plan validado.
    findings : tuple of ValidationFinding
        Findings en orden de ejecución de los checks.
    clinic_id : str
        Perfil de clínica usado.
    """
    plan_id: str
    findings: Tuple[ValidationFinding, ...] = field(default_factory=tuple)
    clinic_id: str = "DEFAULT"

    @property
    def num_errors(self) -> int:
        return sum(1 for f in self.findings if f.severity is Severity.ERROR)

    @property
    def num_warnings(self) -> int:
        return sum(1 for f in self.findings if f.severity is Severity.WARNING)

    @property
    def is_valid(self) -> bool:
        return self.num_errors == 0

    @property
    def status(self) -> str:
        return overall_status(self.findings)

    def by_category(self) -> Dict[str, List[ValidationFinding]]:
        """Findings agrupados por categoría, en orden de primera aparición."""
        grouped: Dict[str, List[ValidationFinding]] = {}
        for f in self.findings:
            grouped.setdefault(f.category, []).append(f)
        return grouped

    def to_dict(self) -> Dict[str, Any]:
        return {
            "plan_id": self.plan_id,
            "clinic_id": self.clinic_id,
            "status": self.status,
            "counts": count_by_severity(self.findings),
            "findings": [f.to_dict() for f in self.findings],
        }
