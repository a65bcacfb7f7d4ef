# src/rocheck/core/goals.py

"""
core.goals
==========

Conversión de clinical goals (ClinicalGoal, tal como los entrega el host)
en restricciones de dosis normalizadas (DoseConstraint).

Reglas:

  - Dirección:
      * LOWER si el texto contiene '≥', '>' o '>='
      * UPPER (Dmax) si el texto contiene 'Dmax' / 'D max', o si el
        measure_type contiene 'Max' y el texto lleva '<' / '≤'
      * UNKNOWN en otro caso
  - Dosis (Gy), por prioridad:
      1) campo estructurado dose_value / dose_unit (Gy, cGy, %)
      2) primer número seguido de Gy/cGy en el texto
      3) primer número seguido de % en el texto, convertido con la dosis
         total del plan
    Devuelve None (nunca 0) si no se puede interpretar.
  - Dosis en porcentaje: operador de comparación seguido de un número
    con '%', salvo que el texto empiece por 'V ' (volumen en %).
"""

from __future__ import annotations

import logging
import re
from collections import abc
from types import MappingProxyType
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

from rocheck.core.snapshot import ClinicalGoal, DoseConstraint, GoalDirection

logger = logging.getLogger("rocheck.core.goals")


_GY_RE = re.compile(r"(\d+\.?\d*)\s*(Gy|cGy)", re.IGNORECASE)
_PCT_RE = re.compile(r"(\d+\.?\d*)\s*%")
_PCT_DOSE_RE = re.compile(r"(?:[<>]=?|[≤≥])\s*\d+\.?\d*\s*%")

_LOWER_TOKENS = ("≥", ">")
_UPPER_OPERATORS = ("<", "≤")
_PERCENT_UNITS = {"%", "percent", "relative"}


# ============================================
# 1) Dirección
# ============================================

def classify_direction(goal: ClinicalGoal) -> GoalDirection:
    text = goal.objective_text or ""
    if not text.strip():
        return GoalDirection.UNKNOWN

    if any(tok in text for tok in _LOWER_TOKENS):
        return GoalDirection.LOWER

    low = text.lower()
    if "dmax" in low or "d max" in low:
        return GoalDirection.UPPER

    measure = (goal.measure_type or "").lower()
    if "max" in measure and any(op in text for op in _UPPER_OPERATORS):
        return GoalDirection.UPPER

    return GoalDirection.UNKNOWN


# ============================================
# 2) Dosis
# ============================================

def _percent_to_gy(pct: float, total_dose_gy: Optional[float]) -> Optional[float]:
    if total_dose_gy is None:
        return None
    return float(total_dose_gy) * pct / 100.0


def normalize_dose(
    value: float,
    unit: Optional[str],
    total_dose_gy: Optional[float],
) -> Optional[float]:
    """Convierte un valor de dosis estructurado a Gy según su unidad."""
    u = (unit or "").strip().lower()
    if u == "cgy":
        return float(value) / 100.0
    if u in _PERCENT_UNITS:
        return _percent_to_gy(float(value), total_dose_gy)
    # 'Gy' o unidad desconocida: se toma tal cual
    return float(value)


def parse_dose_from_text(text: str, total_dose_gy: Optional[float]) -> Optional[float]:
    if not text:
        return None

    m = _GY_RE.search(text)
    if m:
        value = float(m.group(1))
        if m.group(2).lower() == "cgy":
            value /= 100.0
        return value

    m = _PCT_RE.search(text)
    if m:
        return _percent_to_gy(float(m.group(1)), total_dose_gy)

    return None


def extract_dose_gy(goal: ClinicalGoal, total_dose_gy: Optional[float]) -> Optional[float]:
    if goal.dose_value is not None:
        return normalize_dose(goal.dose_value, goal.dose_unit, total_dose_gy)
    return parse_dose_from_text(goal.objective_text or "", total_dose_gy)


def has_percentage_dose(text: str) -> bool:
    if not text:
        return False
    if text.lower().startswith("v "):
        return False
    return _PCT_DOSE_RE.search(text) is not None


def parse_goal(goal: ClinicalGoal, total_dose_gy: Optional[float]) -> DoseConstraint:
    text = goal.objective_text or ""
    return DoseConstraint(
        structure_id=goal.structure_id or "",
        direction=classify_direction(goal),
        dose_gy=extract_dose_gy(goal, total_dose_gy),
        is_percentage_dose=has_percentage_dose(text),
        objective_text=text,
    )


# ============================================
# 3) Índice estructura → restricciones
# ============================================

class ConstraintIndex(abc.Mapping):
    """
    Mapping de sólo lectura: id de estructura → tupla de DoseConstraint.

    Las claves se comparan sin distinguir mayúsculas; se conserva el orden
    de los goals y la grafía del primer goal visto para cada estructura.
    """

    def __init__(self, by_structure: Mapping[str, Tuple[DoseConstraint, ...]], names: Mapping[str, str]):
        self._data = MappingProxyType(dict(by_structure))
        self._names = MappingProxyType(dict(names))

    def __getitem__(self, structure_id: str) -> Tuple[DoseConstraint, ...]:
        return self._data[structure_id.casefold()]

    def __iter__(self) -> Iterator[str]:
        return (self._names[k] for k in self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, structure_id) -> bool:
        return isinstance(structure_id, str) and structure_id.casefold() in self._data

    def get(self, structure_id, default=()):
        if not isinstance(structure_id, str):
            return default
        return self._data.get(structure_id.casefold(), default)


def build_constraint_index(
    goals: Optional[Iterable[ClinicalGoal]],
    total_dose_gy: Optional[float],
) -> ConstraintIndex:
    grouped: Dict[str, List[DoseConstraint]] = {}
    names: Dict[str, str] = {}

    for goal in goals or ():
        sid = (goal.structure_id or "").strip()
        if not sid:
            logger.debug("Clinical goal sin estructura asociada descartado")
            continue
        key = sid.casefold()
        names.setdefault(key, sid)
        grouped.setdefault(key, []).append(parse_goal(goal, total_dose_gy))

    return ConstraintIndex({k: tuple(v) for k, v in grouped.items()}, names)


def first_dose(
    constraints: Sequence[DoseConstraint],
    direction: GoalDirection,
) -> Optional[float]:
    """Primera dosis no nula entre las restricciones de una dirección."""
    for c in constraints:
        if c.direction is direction and c.dose_gy is not None:
            return c.dose_gy
    return None
