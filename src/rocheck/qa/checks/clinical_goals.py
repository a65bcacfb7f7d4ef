# src/rocheck/qa/checks/clinical_goals.py

"""
checks/clinical_goals.py
========================

Checks que dependen de los clinical goals del plan:

  - check_clinical_goals_coverage → toda estructura aplicable tiene goals
  - check_target_oar_overlap      → target con dosis mínima > Dmax de un
                                    OAR con el que se solapa
  - check_sib_dose_units          → en planes SIB los goals de dosis no
                                    pueden ir en %

Todos devuelven una lista de ValidationFinding y una lista vacía si falta
el plan (goals) o el structure set.
"""

from __future__ import annotations

from typing import List, Tuple

from rocheck.core.geometry import overlaps
from rocheck.core.goals import first_dose
from rocheck.core.naming import target_prefix_of
from rocheck.core.snapshot import GoalDirection, Severity, Structure, ValidationFinding
from rocheck.qa.checks.context import ValidationContext, make_finding

COVERAGE = "CLINICAL_GOALS_COVERAGE"
OVERLAP = "TARGET_OAR_OVERLAP"
SIB = "SIB_DOSE_UNITS"


# =====================================================
# 1) Cobertura de clinical goals
# =====================================================

def check_clinical_goals_coverage(ctx: ValidationContext) -> List[ValidationFinding]:
    """
    Cada estructura elegible (no excluida por el catálogo) necesita al
    menos un goal usable (dirección reconocida o dosis interpretable).

    Sin ninguna prescripción Reviewed se añade un Info (los targets quedan
    fuera) y ya no se emite el resumen de "todo cubierto".
    """
    if not ctx.has_plan or not ctx.has_structures:
        return []

    findings: List[ValidationFinding] = []
    eligible = ctx.catalog.eligible()

    for s in eligible:
        usable = [c for c in ctx.constraints.get(s.id) if c.is_usable]
        if not usable:
            findings.append(make_finding(
                COVERAGE,
                Severity.WARNING,
                f"La estructura '{s.id}' no tiene ningún clinical goal asociado.",
            ))

    if not ctx.snapshot.reviewed_target_ids():
        findings.append(make_finding(
            COVERAGE,
            Severity.INFO,
            "No hay prescripciones en estado Reviewed: las estructuras target "
            "no se evalúan en la cobertura de clinical goals.",
        ))

    if not eligible:
        findings.append(make_finding(
            COVERAGE,
            Severity.INFO,
            "Todas las estructuras están excluidas de la cobertura de clinical goals.",
        ))
    elif not findings:
        findings.append(make_finding(
            COVERAGE,
            Severity.INFO,
            f"Las {len(eligible)} estructuras aplicables tienen clinical goals asociados.",
        ))

    return findings


# =====================================================
# 2) Conflictos target–OAR (dosis + solape)
# =====================================================

def _collect_dose_candidates(
    ctx: ValidationContext,
) -> Tuple[List[Tuple[Structure, float]], List[Tuple[Structure, float]]]:
    """
    (targets con dosis mínima, OARs con Dmax); en ambos casos se toma la
    primera dosis no nula de la dirección correspondiente.
    """
    lower: List[Tuple[Structure, float]] = []
    dmax: List[Tuple[Structure, float]] = []
    for s in ctx.structures:
        cs = ctx.constraints.get(s.id)
        if not cs:
            continue
        low_dose = first_dose(cs, GoalDirection.LOWER)
        if low_dose is not None:
            lower.append((s, low_dose))
        max_dose = first_dose(cs, GoalDirection.UPPER)
        if max_dose is not None:
            dmax.append((s, max_dose))
    return lower, dmax


def check_target_oar_overlap(ctx: ValidationContext) -> List[ValidationFinding]:
    """
    Dos fases:
      1) filtro numérico barato: pares (target, OAR) con
         dosis_mínima_target > Dmax_OAR
      2) test espacial (overlaps) sólo sobre esos pares
    """
    if not ctx.has_plan or not ctx.has_structures or not ctx.has_grid:
        return []
    if not ctx.structures:
        return []

    lower, dmax = _collect_dose_candidates(ctx)

    conflicts = [
        (target, t_dose, oar, o_dose)
        for target, t_dose in lower
        for oar, o_dose in dmax
        if target.id.casefold() != oar.id.casefold() and t_dose > o_dose
    ]

    findings: List[ValidationFinding] = []
    for target, t_dose, oar, o_dose in conflicts:
        ctx.deadline.check(OVERLAP)
        if overlaps(target, oar, ctx.grid, ctx.deadline):
            findings.append(make_finding(
                OVERLAP,
                Severity.WARNING,
                f"{target.id} (lower goal: {t_dose:.2f} Gy) se solapa con el OAR "
                f"'{oar.id}' (Dmax: {o_dose:.2f} Gy).",
            ))

    if findings:
        findings.append(make_finding(
            OVERLAP,
            Severity.INFO,
            "Recomendación: crea estructuras _eval y deja un comentario en la prescripción.",
        ))
    elif conflicts:
        findings.append(make_finding(
            OVERLAP,
            Severity.INFO,
            f"Hay {len(conflicts)} par(es) target-OAR con conflicto de dosis, "
            "pero no se detectó solape espacial.",
        ))
    else:
        findings.append(make_finding(
            OVERLAP,
            Severity.INFO,
            "No se detectaron targets con conflicto de dosis frente al Dmax de un OAR.",
        ))

    return findings


# =====================================================
# 3) Unidades de dosis en planes SIB
# =====================================================

def _is_sib(doses: List[float], threshold_pct: float) -> bool:
    """
    SIB si algún par de dosis difiere más de threshold_pct % de la mayor.
    """
    for i in range(len(doses)):
        for j in range(i + 1, len(doses)):
            high = max(doses[i], doses[j])
            if high <= 0:
                continue
            if abs(doses[i] - doses[j]) / high * 100.0 > threshold_pct:
                return True
    return False


def check_sib_dose_units(ctx: ValidationContext) -> List[ValidationFinding]:
    """
    En un plan SIB (targets con dosis mínimas distintas) todo goal con la
    dosis expresada en % es un Error. Sin SIB, o con todo en Gy, no hay
    findings.
    """
    if not ctx.has_plan or not ctx.has_structures:
        return []

    target_doses: List[float] = []
    for s in ctx.structures:
        if target_prefix_of(s.id, ctx.config.target_prefixes) is None:
            continue
        dose = first_dose(ctx.constraints.get(s.id), GoalDirection.LOWER)
        if dose is not None:
            target_doses.append(dose)

    if not _is_sib(target_doses, ctx.config.sib_dose_percent_threshold):
        return []

    findings: List[ValidationFinding] = []
    for structure_id, constraints in ctx.constraints.items():
        for c in constraints:
            if c.is_percentage_dose:
                findings.append(make_finding(
                    SIB,
                    Severity.ERROR,
                    f"Plan SIB: el clinical goal de '{structure_id}' expresa la dosis "
                    "en %; usa Gy.",
                ))
    return findings
