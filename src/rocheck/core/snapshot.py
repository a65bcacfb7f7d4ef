# src/rocheck/core/snapshot.py

"""
Modelo de datos del motor de QA.

Todas las entidades se construyen una sola vez a partir del snapshot que
entrega el host al inicio de una validación y no se mutan después:
dataclasses frozen, colecciones en tuplas y arrays numpy de sólo lectura.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np


# ---------------------------------------------------------
# Grid de imagen
# ---------------------------------------------------------

# Número aproximado de muestras por eje que recorren las primitivas geométricas
SAMPLES_XY = 120
SAMPLES_Z = 60


@dataclass(frozen=True)
class GeometryGrid:
    """
    Vista de sólo lectura de un volumen 3D muestreado regularmente.

    Attributes
    ----------
    origin : (x, y, z)
        Posición (mm) del voxel (0, 0, 0) en coordenadas de paciente.
    resolution : (dx, dy, dz)
        Tamaño de voxel en mm.
    size : (nx, ny, nz)
        Número de voxels por eje.
    """
    origin: Tuple[float, float, float]
    resolution: Tuple[float, float, float]
    size: Tuple[int, int, int]

    def slice_z_mm(self, k: int) -> float:
        return self.origin[2] + k * self.resolution[2]

    def slice_index_of(self, z_mm: float) -> int:
        """Índice de slice más cercano a una coordenada z (mm)."""
        return int(round((z_mm - self.origin[2]) / self.resolution[2]))

    def sample_steps(self) -> Tuple[int, int]:
        """
        Pasos de muestreo (step_xy, step_z) usados por contención/solape.

        step_xy = max(1, nx // 120), step_z = max(1, nz // 60).
        """
        step_xy = max(1, int(self.size[0]) // SAMPLES_XY)
        step_z = max(1, int(self.size[2]) // SAMPLES_Z)
        return step_xy, step_z


# ---------------------------------------------------------
# Estructuras (contornos por slice)
# ---------------------------------------------------------

def _as_polygon(points: Any) -> np.ndarray:
    arr = np.array(points, dtype=float)
    if arr.ndim != 2 or arr.shape[1] not in (2, 3):
        raise ValueError(f"Polígono con forma inválida: {arr.shape}")
    if arr.shape[1] == 2:
        arr = np.column_stack([arr, np.zeros(len(arr))])
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True, eq=False)
class Structure:
    """
    Estructura anatómica contorneada.

    - id: identificador único (case-insensitive) dentro del snapshot
    - dicom_type: PTV / CTV / GTV / ORGAN / SUPPORT / MARKER / EXTERNAL / ...
    - has_segment: False si no hay modelo de segmento usable; las primitivas
      geométricas degradan de forma conservadora en ese caso
    - contours_by_slice: tupla ordenada de (slice_index, (polígono, ...)),
      cada polígono un array (N, 3) en mm
    """
    id: str
    dicom_type: str = ""
    volume_cc: float = 0.0
    is_high_resolution: bool = False
    has_segment: bool = True
    contours_by_slice: Tuple[Tuple[int, Tuple[np.ndarray, ...]], ...] = ()
    _by_slice: Dict[int, Tuple[np.ndarray, ...]] = field(
        init=False, repr=False, compare=False, default=None
    )

    def __post_init__(self):
        object.__setattr__(self, "dicom_type", (self.dicom_type or "").strip().upper())
        object.__setattr__(self, "_by_slice", dict(self.contours_by_slice))

    @classmethod
    def from_contours(
        cls,
        structure_id: str,
        dicom_type: str = "",
        contours: Optional[Mapping[int, Sequence[Any]]] = None,
        volume_cc: float = 0.0,
        is_high_resolution: bool = False,
        has_segment: Optional[bool] = None,
    ) -> "Structure":
        """
        Construye una Structure desde un dict {slice_index: [polígono, ...]}.

        Los polígonos pueden venir como listas de puntos (x, y, z) o (x, y).
        Si has_segment no se indica, se considera True cuando hay contornos.
        """
        items: List[Tuple[int, Tuple[np.ndarray, ...]]] = []
        for k in sorted(contours or {}):
            polys = tuple(_as_polygon(p) for p in contours[k] if len(p) > 0)
            if polys:
                items.append((int(k), polys))

        if has_segment is None:
            has_segment = bool(items)

        return cls(
            id=structure_id,
            dicom_type=dicom_type,
            volume_cc=float(volume_cc),
            is_high_resolution=bool(is_high_resolution),
            has_segment=bool(has_segment),
            contours_by_slice=tuple(items),
        )

    @property
    def is_empty(self) -> bool:
        return not self.contours_by_slice

    def contours_on_slice(self, k: int) -> Tuple[np.ndarray, ...]:
        return self._by_slice.get(k, ())

    def has_contours_on_slice(self, k: int) -> bool:
        return k in self._by_slice

    def slice_indices(self) -> Tuple[int, ...]:
        return tuple(k for k, _ in self.contours_by_slice)

    def vertices_on_slice(self, k: int) -> np.ndarray:
        """Todos los vértices del slice k concatenados, en orden, (N, 3)."""
        polys = self.contours_on_slice(k)
        if not polys:
            return np.empty((0, 3), dtype=float)
        return np.vstack(polys)


# ---------------------------------------------------------
# Clinical goals y restricciones de dosis
# ---------------------------------------------------------

@dataclass(frozen=True)
class ClinicalGoal:
    """
    Clinical goal tal como lo entrega el host.

    Es la única representación "cruda" de un goal; core.goals la convierte
    una sola vez en DoseConstraint y el resto del motor sólo ve ese tipo.
    """
    structure_id: Optional[str]
    objective_text: str = ""
    measure_type: Optional[str] = None
    dose_value: Optional[float] = None
    dose_unit: Optional[str] = None


class GoalDirection(Enum):
    LOWER = "Lower"
    UPPER = "Upper"
    UNKNOWN = "Unknown"


@dataclass(frozen=True)
class DoseConstraint:
    """
    Restricción de dosis normalizada.

    dose_gy es None (nunca 0) cuando la dosis no se pudo interpretar.
    is_percentage_dose sólo mira el lado de dosis de la comparación.
    """
    structure_id: str
    direction: GoalDirection
    dose_gy: Optional[float]
    is_percentage_dose: bool = False
    objective_text: str = ""

    @property
    def is_usable(self) -> bool:
        return self.direction is not GoalDirection.UNKNOWN or self.dose_gy is not None


# ---------------------------------------------------------
# Prescripción
# ---------------------------------------------------------

class PrescriptionStatus(Enum):
    REVIEWED = "Reviewed"
    OTHER = "Other"

    @classmethod
    def parse(cls, value: Any) -> "PrescriptionStatus":
        if isinstance(value, cls):
            return value
        if str(value or "").strip().lower() == "reviewed":
            return cls.REVIEWED
        return cls.OTHER


@dataclass(frozen=True)
class PrescriptionTarget:
    target_id: str
    status: PrescriptionStatus = PrescriptionStatus.REVIEWED


# ---------------------------------------------------------
# Snapshot completo
# ---------------------------------------------------------

@dataclass(frozen=True, eq=False)
class PlanSnapshot:
    """
    Snapshot inmutable de un plan para una validación.

    structures / grid / goals a None indican, respectivamente, que no hay
    structure set, imagen o plan (MissingPrerequisite): los checks que los
    necesitan no devuelven findings.
    """
    structures: Optional[Tuple[Structure, ...]]
    grid: Optional[GeometryGrid] = None
    goals: Optional[Tuple[ClinicalGoal, ...]] = None
    plan_total_dose_gy: Optional[float] = None
    prescription_targets: Tuple[PrescriptionTarget, ...] = ()
    plan_id: str = ""

    def reviewed_target_ids(self) -> frozenset:
        """Ids (casefold) de los targets de prescripción en estado Reviewed."""
        return frozenset(
            t.target_id.casefold()
            for t in self.prescription_targets
            if t.status is PrescriptionStatus.REVIEWED and t.target_id
        )

    def structure_count(self) -> int:
        return len(self.structures or ())


# ---------------------------------------------------------
# Findings
# ---------------------------------------------------------

class Severity(Enum):
    ERROR = "Error"
    WARNING = "Warning"
    INFO = "Info"


@dataclass(frozen=True)
class ValidationFinding:
    """
    Resultado individual de una regla.

    - category: categoría de la regla ("Target Containment", ...)
    - message: texto para el usuario; sólo ids de estructuras, nunca texto
      libre del paciente
    - severity: Error / Warning / Info
    - is_field_result: resultado individual (p.ej. por estructura) que el
      informe puede colapsar en un resumen
    """
    category: str
    message: str
    severity: Severity
    is_field_result: bool = False

    @property
    def is_valid(self) -> bool:
        return self.severity is not Severity.ERROR

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category,
            "message": self.message,
            "severity": self.severity.value,
            "is_field_result": self.is_field_result,
        }
