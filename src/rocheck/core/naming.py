# src/rocheck/core/naming.py

"""
Clasificación de estructuras por nombre y tipo DICOM.

Las reglas de exclusión y los prefijos de target llegan por parámetro
(ValidationConfig) para no depender de qa.config desde core.
"""

from __future__ import annotations

import fnmatch
import logging
from enum import Enum, auto
from typing import TYPE_CHECKING, Dict, FrozenSet, Iterable, List, Optional, Sequence

from rocheck.core.snapshot import Structure

if TYPE_CHECKING:
    from rocheck.qa.config import ValidationConfig

logger = logging.getLogger("rocheck.core.naming")


# ============================================
# 1) Tipos
# ============================================

class StructureRole(Enum):
    TARGET = auto()
    OAR = auto()
    EXCLUDED = auto()


# Tipos DICOM que nunca participan en la cobertura de goals
SUPPORT_MARKER_TYPES = frozenset({"SUPPORT", "MARKER"})

PTV_PREFIX = "PTV"
EXTERNAL_TYPE = "EXTERNAL"


# ============================================
# 2) Helpers de nombre
# ============================================

def matches_pattern(structure_id: str, pattern: str) -> bool:
    """
    Match case-insensitive contra un patrón con '*':

      - 'z_*'     → prefijo
      - '*wire*'  → substring
      - '*_eval'  → sufijo
      - 'Sternum' → igualdad exacta
    """
    if not structure_id or not pattern:
        return False
    return fnmatch.fnmatchcase(structure_id.casefold(), pattern.casefold())


def target_prefix_of(structure_id: str, prefixes: Sequence[str]) -> Optional[str]:
    """Prefijo de target (PTV/CTV/GTV) con el que empieza el id, o None."""
    up = (structure_id or "").upper()
    for prefix in prefixes:
        if up.startswith(prefix.upper()):
            return prefix
    return None


def has_prefix(structure_id: str, prefix: str) -> bool:
    return (structure_id or "").upper().startswith(prefix.upper())


def suffix_of(structure_id: str, prefix: str, trim_separator: bool = False) -> str:
    """
    Resto del id tras quitar el prefijo (case-insensitive).

    Si el id no empieza por el prefijo se devuelve sin cambios.
    Con trim_separator=True se quitan además los '_' iniciales del sufijo
    (PTV59.4 ↔ CTV_59.4 pasan a emparejar).
    """
    if not has_prefix(structure_id, prefix):
        return structure_id
    suffix = structure_id[len(prefix):]
    if trim_separator:
        suffix = suffix.lstrip("_")
    return suffix


def is_support_or_marker(structure: Structure) -> bool:
    return structure.dicom_type in SUPPORT_MARKER_TYPES


def find_suffix_match(
    structures: Iterable[Structure],
    prefix: str,
    suffix: str,
    trim_separator: bool = False,
) -> Optional[Structure]:
    """
    Primera estructura con el prefijo dado cuyo sufijo coincide
    (igualdad exacta, case-insensitive) con `suffix`.
    Las estructuras SUPPORT/MARKER nunca emparejan.
    """
    wanted = suffix.casefold()
    for s in structures:
        if is_support_or_marker(s):
            continue
        if not has_prefix(s.id, prefix):
            continue
        if suffix_of(s.id, prefix, trim_separator).casefold() == wanted:
            return s
    return None


def classify(
    structure: Structure,
    reviewed_target_ids: FrozenSet[str],
    config: "ValidationConfig",
) -> StructureRole:
    """
    Rol de la estructura; el primer criterio de exclusión que aplica gana:

      1) dicom_type SUPPORT o MARKER
      2) id matchea algún patrón de exclusión
      3) id está en el set explícito de exclusiones
      4) id empieza por un prefijo de target y no está en la prescripción
         Reviewed (estructuras de evaluación / backup)

    El resto es TARGET (si lleva prefijo de target) u OAR.
    """
    if is_support_or_marker(structure):
        return StructureRole.EXCLUDED

    sid = structure.id
    if any(matches_pattern(sid, p) for p in config.excluded_patterns):
        return StructureRole.EXCLUDED

    if sid.casefold() in config.excluded_structures:
        return StructureRole.EXCLUDED

    if target_prefix_of(sid, config.target_prefixes) is not None:
        if sid.casefold() not in reviewed_target_ids:
            return StructureRole.EXCLUDED
        return StructureRole.TARGET

    return StructureRole.OAR


# ============================================
# 3) Catálogo de estructuras
# ============================================

class StructureCatalog:
    """
    Clasificación de todas las estructuras de un snapshot.

    Se construye una vez por validación y es de sólo lectura; todos los
    checks la comparten.
    """

    def __init__(
        self,
        structures: Iterable[Structure],
        reviewed_target_ids: FrozenSet[str],
        config: "ValidationConfig",
    ):
        self._config = config
        self._structures = tuple(structures)
        self._reviewed = frozenset(reviewed_target_ids)
        self._by_id: Dict[str, Structure] = {}
        self._roles: Dict[str, StructureRole] = {}

        for s in self._structures:
            key = s.id.casefold()
            if key in self._by_id:
                logger.debug("Id de estructura duplicado ignorado: %s", s.id)
                continue
            self._by_id[key] = s
            self._roles[key] = classify(s, self._reviewed, config)

    # ---- consultas básicas ----

    @property
    def structures(self):
        return self._structures

    def get(self, structure_id: str) -> Optional[Structure]:
        return self._by_id.get((structure_id or "").casefold())

    def role_of(self, structure: Structure) -> StructureRole:
        return self._roles.get(structure.id.casefold(), StructureRole.EXCLUDED)

    def is_eligible(self, structure: Structure) -> bool:
        return self.role_of(structure) is not StructureRole.EXCLUDED

    def eligible(self) -> List[Structure]:
        return [s for s in self._structures if self.is_eligible(s)]

    # ---- targets / body ----

    def targets_with_prefix(self, prefix: str, skip_support: bool = True) -> List[Structure]:
        """Estructuras cuyo id empieza por `prefix` (sin SUPPORT/MARKER)."""
        out: List[Structure] = []
        for s in self._structures:
            if not has_prefix(s.id, prefix):
                continue
            if skip_support and is_support_or_marker(s):
                continue
            out.append(s)
        return out

    def suffix_of(self, structure_id: str, prefix: str) -> str:
        return suffix_of(structure_id, prefix, self._config.trim_suffix_separator)

    def find_suffix_match(self, prefix: str, suffix: str) -> Optional[Structure]:
        return find_suffix_match(
            self._structures, prefix, suffix, self._config.trim_suffix_separator
        )

    def linked_targets(self, ptv: Structure) -> List[Structure]:
        """CTV/GTV (resto de prefijos) que comparten sufijo con el PTV."""
        suffix = self.suffix_of(ptv.id, PTV_PREFIX)
        out: List[Structure] = []
        for prefix in inner_target_prefixes(self._config.target_prefixes):
            match = self.find_suffix_match(prefix, suffix)
            if match is not None:
                out.append(match)
        return out

    def body_structure(self) -> Optional[Structure]:
        """Estructura BODY: id configurado y tipo DICOM EXTERNAL."""
        body = self.get(self._config.body_structure_id)
        if body is None or body.dicom_type != EXTERNAL_TYPE:
            return None
        return body


def inner_target_prefixes(prefixes: Sequence[str]) -> List[str]:
    """Prefijos de target distintos de PTV (los que deben quedar dentro del PTV)."""
    return [p for p in prefixes if p.upper() != PTV_PREFIX]
