# src/rocheck/qa/checks/__init__.py

"""
Orquestador de checks de QA; no contiene lógica clínica directa.

Los checks viven en submódulos especializados:

    - clinical_goals → cobertura de goals, conflictos target-OAR, SIB
    - structures     → contención, resolución, tipos DICOM, proximidad BODY

CHECK_REGISTRY fija el orden de ejecución y de reporte. Cada check se
ejecuta aislado (_run_guarded):

    - timeout (Deadline agotado) → un Info "check omitido"
    - cualquier otra excepción   → un Warning saneado que sólo nombra la
                                   categoría; el traceback va al log (debug)

Ningún fallo de un check aborta al resto. Como el snapshot, el catálogo
y el índice de restricciones son inmutables, los checks pueden correr en
paralelo (config.run_in_parallel); el orden de salida no cambia.

Cómo añadir un check: escribir check_xxx(ctx) -> List[ValidationFinding]
en el submódulo que toque, darle entrada en GLOBAL_CHECK_CONFIG
(rocheck.qa.config) y añadirlo a CHECK_REGISTRY.
"""

from __future__ import annotations

import dataclasses
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, List, Optional, Tuple

from rocheck.core.deadline import Deadline
from rocheck.core.snapshot import PlanSnapshot, Severity, ValidationFinding
from rocheck.errors import ValidationTimeout
from rocheck.qa.aggregation import aggregate_findings
from rocheck.qa.checks import clinical_goals, structures
from rocheck.qa.checks.context import ValidationContext, build_context, make_finding
from rocheck.qa.config import (
    ValidationConfig,
    get_check_category,
    get_qa_logger,
    is_event_logging_enabled,
)

logger = get_qa_logger("rocheck.qa.checks")

CheckFn = Callable[[ValidationContext], List[ValidationFinding]]

CHECK_REGISTRY: Dict[str, CheckFn] = {
    clinical_goals.COVERAGE: clinical_goals.check_clinical_goals_coverage,
    structures.CONTAINMENT: structures.check_target_containment,
    clinical_goals.OVERLAP: clinical_goals.check_target_oar_overlap,
    structures.RESOLUTION: structures.check_target_resolution,
    structures.TYPES: structures.check_structure_types,
    clinical_goals.SIB: clinical_goals.check_sib_dose_units,
    structures.PROXIMITY: structures.check_ptv_body_proximity,
}


def _run_guarded(check_id: str, fn: CheckFn, ctx: ValidationContext) -> List[ValidationFinding]:
    timeout = ctx.config.check_timeout_s
    local_ctx = dataclasses.replace(ctx, deadline=Deadline(timeout))
    category = get_check_category(check_id)

    if is_event_logging_enabled("check_start"):
        logger.info("[QA]   -> %s...", category)
    t0 = time.perf_counter()

    try:
        findings = list(fn(local_ctx))
    except ValidationTimeout:
        logger.warning("[QA] %s omitido: tiempo límite de %s s agotado", category, timeout)
        return [make_finding(
            check_id,
            Severity.INFO,
            f"Validación omitida: se superó el tiempo límite de {timeout:g} s.",
        )]
    except Exception:
        logger.warning("[QA] Error inesperado en el check %s", category)
        logger.debug("Traceback del check %s", category, exc_info=True)
        return [make_finding(
            check_id,
            Severity.WARNING,
            f"Se produjo un error de validación en la categoría '{category}'.",
        )]

    if is_event_logging_enabled("check_end"):
        logger.info(
            "[QA]   -> %s OK. Num=%d (%.2f s)", category, len(findings), time.perf_counter() - t0
        )
    return findings


def run_checks(
    ctx: ValidationContext,
    registry: Optional[Dict[str, CheckFn]] = None,
) -> List[Tuple[str, List[ValidationFinding]]]:
    """
    Ejecuta los checks habilitados y devuelve [(check_id, findings), ...]
    en el orden del registry.
    """
    reg = CHECK_REGISTRY if registry is None else registry
    selected = [(cid, fn) for cid, fn in reg.items() if ctx.config.is_check_enabled(cid)]

    if ctx.config.run_in_parallel and len(selected) > 1:
        with ThreadPoolExecutor(max_workers=len(selected)) as pool:
            futures = [(cid, pool.submit(_run_guarded, cid, fn, ctx)) for cid, fn in selected]
            return [(cid, fut.result()) for cid, fut in futures]

    return [(cid, _run_guarded(cid, fn, ctx)) for cid, fn in selected]


def run_all_checks(
    snapshot: PlanSnapshot,
    config: ValidationConfig,
    registry: Optional[Dict[str, CheckFn]] = None,
) -> List[ValidationFinding]:
    """
    Punto de entrada: construye el contexto una vez y concatena los
    findings de todos los checks en orden de registro.
    """
    ctx = build_context(snapshot, config)
    logger.info(
        "[QA] Validando plan '%s' (%d estructuras, clínica %s)",
        snapshot.plan_id or "-", snapshot.structure_count(), config.clinic_id,
    )

    return aggregate_findings(findings for _, findings in run_checks(ctx, registry))
