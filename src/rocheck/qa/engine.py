# src/rocheck/qa/engine.py

from typing import List, Optional

from rocheck.core.snapshot import PlanSnapshot, ValidationFinding
from rocheck.qa.aggregation import QAResult
from rocheck.qa.checks import run_all_checks
from rocheck.qa.config import ValidationConfig, get_validation_config


def evaluate_snapshot(
    snapshot: PlanSnapshot,
    config: Optional[ValidationConfig] = None,
) -> QAResult:
    """
    Interfaz de alto nivel del QA.

    Toma un PlanSnapshot y devuelve un QAResult con los findings de todos
    los checks habilitados. Sin config se usa el perfil DEFAULT con los
    overrides del JSON.
    """
    cfg = config if config is not None else get_validation_config()

    # 1) Correr todos los checks definidos en qa.checks
    findings: List[ValidationFinding] = run_all_checks(snapshot, cfg)

    # 2) Empaquetar el resultado
    return QAResult(plan_id=snapshot.plan_id, findings=tuple(findings), clinic_id=cfg.clinic_id)
