# src/rocheck/qa/checks/structures.py

"""
checks/structures.py
====================

Checks geométricos y de naming sobre el structure set:

  - check_target_containment  → CTV/GTV dentro del PTV con el mismo sufijo
  - check_target_resolution   → PTVs pequeños en alta resolución
  - check_structure_types     → prefijo PTV/CTV/GTV ↔ tipo DICOM
  - check_ptv_body_proximity  → distancia de cada PTV a la superficie BODY

Umbrales en ValidationConfig (rocheck.qa.config.CLINIC_PROFILES).
"""

from __future__ import annotations

from typing import List, Optional, Tuple

from rocheck.core.geometry import is_contained, min_distance
from rocheck.core.naming import (
    PTV_PREFIX,
    inner_target_prefixes,
    is_support_or_marker,
    target_prefix_of,
)
from rocheck.core.snapshot import Severity, Structure, ValidationFinding
from rocheck.qa.checks.context import ValidationContext, make_finding

CONTAINMENT = "TARGET_CONTAINMENT"
RESOLUTION = "TARGET_RESOLUTION"
TYPES = "STRUCTURE_TYPES"
PROXIMITY = "PTV_BODY_PROXIMITY"


# =====================================================
# 1) Contención CTV/GTV ⊂ PTV
# =====================================================

def check_target_containment(ctx: ValidationContext) -> List[ValidationFinding]:
    if not ctx.has_structures or not ctx.has_grid:
        return []

    findings: List[ValidationFinding] = []
    checked = 0

    for ptv in ctx.catalog.targets_with_prefix(PTV_PREFIX):
        suffix = ctx.catalog.suffix_of(ptv.id, PTV_PREFIX)
        for prefix in inner_target_prefixes(ctx.config.target_prefixes):
            inner = ctx.catalog.find_suffix_match(prefix, suffix)
            if inner is None:
                continue
            checked += 1
            if not is_contained(inner, ptv, ctx.grid, ctx.deadline):
                findings.append(make_finding(
                    CONTAINMENT,
                    Severity.ERROR,
                    f"{prefix} '{inner.id}' se extiende fuera del PTV '{ptv.id}'.",
                ))

    if checked > 0 and not findings:
        findings.append(make_finding(
            CONTAINMENT,
            Severity.INFO,
            f"Los {checked} volúmenes target están correctamente contenidos en su PTV.",
        ))
    return findings


# =====================================================
# 2) Resolución de PTVs pequeños
# =====================================================

def check_target_resolution(ctx: ValidationContext) -> List[ValidationFinding]:
    """
    volumen < crítico y sin alta resolución  → Error
    volumen < aviso   y sin alta resolución  → Warning

    "Alta resolución" exige que el PTV y sus CTV/GTV enlazados por sufijo
    lo estén todos. El umbral de aviso es exclusivo (10.0 cc no avisa).
    """
    if not ctx.has_structures:
        return []

    ptvs = ctx.catalog.targets_with_prefix(PTV_PREFIX)
    if not ptvs:
        return []

    critical = ctx.config.high_res_critical_threshold_cc
    warning = ctx.config.high_res_volume_threshold_cc

    findings: List[ValidationFinding] = []
    small = 0
    for ptv in ptvs:
        linked = ctx.catalog.linked_targets(ptv)
        all_high_res = ptv.is_high_resolution and all(t.is_high_resolution for t in linked)

        if ptv.volume_cc < warning:
            small += 1
        if all_high_res:
            continue

        if ptv.volume_cc < critical:
            findings.append(make_finding(
                RESOLUTION,
                Severity.ERROR,
                f"PTV '{ptv.id}' ({ptv.volume_cc:.2f} cc) está por debajo de {critical:.1f} cc "
                "y no está contorneado en alta resolución.",
            ))
        elif ptv.volume_cc < warning:
            findings.append(make_finding(
                RESOLUTION,
                Severity.WARNING,
                f"PTV '{ptv.id}' ({ptv.volume_cc:.2f} cc) está por debajo de {warning:.1f} cc; "
                "considera usar alta resolución.",
            ))

    if not findings:
        smallest = min(ptvs, key=lambda s: s.volume_cc)
        findings.append(make_finding(
            RESOLUTION,
            Severity.INFO,
            f"Resolución de targets correcta ({small} PTV(s) por debajo de {warning:.1f} cc). "
            f"PTV más pequeño: '{smallest.id}' ({smallest.volume_cc:.2f} cc).",
        ))
    return findings


# =====================================================
# 3) Tipo DICOM ↔ prefijo
# =====================================================

def check_structure_types(ctx: ValidationContext) -> List[ValidationFinding]:
    if not ctx.has_structures:
        return []

    findings: List[ValidationFinding] = []
    checked = 0

    for s in ctx.structures:
        if is_support_or_marker(s):
            continue
        prefix = target_prefix_of(s.id, ctx.config.target_prefixes)
        if prefix is None:
            continue
        checked += 1
        if s.dicom_type != prefix.upper():
            findings.append(make_finding(
                TYPES,
                Severity.ERROR,
                f"La estructura '{s.id}' empieza por {prefix} pero su tipo DICOM es "
                f"'{s.dicom_type or 'vacío'}' (debería ser {prefix.upper()}).",
            ))

    if checked > 0 and not findings:
        findings.append(make_finding(
            TYPES,
            Severity.INFO,
            f"Las {checked} estructuras target tienen el tipo DICOM correcto.",
        ))
    return findings


# =====================================================
# 4) Proximidad PTV–BODY
# =====================================================

def check_ptv_body_proximity(ctx: ValidationContext) -> List[ValidationFinding]:
    """
    Distancia mínima (vértice a vértice, slices compartidos) de cada PTV a
    la superficie del BODY. Warning por PTV a distancia <= umbral; si
    ninguno lo está, un Info con el PTV más cercano.
    """
    if not ctx.has_structures or not ctx.has_grid:
        return []

    body = ctx.catalog.body_structure()
    if body is None:
        return [make_finding(
            PROXIMITY,
            Severity.WARNING,
            f"No se puede validar la proximidad PTV-Body: no existe la estructura "
            f"'{ctx.config.body_structure_id}' de tipo EXTERNAL.",
        )]

    ptvs = [s for s in ctx.structures if target_prefix_of(s.id, (PTV_PREFIX,)) is not None]
    if not ptvs:
        return []

    threshold = ctx.config.ptv_body_proximity_threshold_mm
    distances: List[Tuple[Structure, float]] = []
    for ptv in ptvs:
        res: Optional[Tuple[float, tuple]] = min_distance(
            ptv, body, ctx.deadline, ctx.config.kdtree_min_pairs
        )
        if res is not None:
            distances.append((ptv, res[0]))

    findings: List[ValidationFinding] = []
    for ptv, dist in distances:
        if dist <= threshold:
            findings.append(make_finding(
                PROXIMITY,
                Severity.WARNING,
                f"El PTV {ptv.id} está a {dist:.1f} mm de la superficie del Body. "
                "Considera crear una estructura EVAL.",
            ))

    if not findings and distances:
        closest, dist = min(distances, key=lambda t: t[1])
        findings.append(make_finding(
            PROXIMITY,
            Severity.INFO,
            f"PTV más cercano: {closest.id} a {dist:.1f} mm de la superficie del Body.",
        ))
    return findings
