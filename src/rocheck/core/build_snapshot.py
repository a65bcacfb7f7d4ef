# src/rocheck/core/build_snapshot.py

"""
Construcción de PlanSnapshot en el borde del sistema.

Dos entradas soportadas:

  1) Documento JSON (snapshot_from_dict / load_snapshot_json):

     {
       "plan_id": "Plan1",
       "plan_total_dose_gy": 70.0,
       "grid": {"origin": [x, y, z], "resolution": [dx, dy, dz], "size": [nx, ny, nz]},
       "structures": [
         {"id": "PTV_70", "dicom_type": "PTV", "volume_cc": 120.5,
          "is_high_resolution": false, "has_segment": true,
          "contours": {"12": [[[x, y, z], ...], ...]}}
       ],
       "clinical_goals": [
         {"structure_id": "PTV_70", "objective": "D 95 % ≥ 66.5 Gy",
          "measure_type": "MeasureTypeDQP", "dose": {"value": 66.5, "unit": "Gy"}}
       ],
       "prescription_targets": [{"target_id": "PTV_70", "status": "Reviewed"}],
       "high_resolution_structures": ["PTV_boost"]
     }

     Las claves "grid", "structures" o "clinical_goals" ausentes significan
     que no hay imagen / structure set / plan.

  2) DICOM (build_snapshot_from_dicom): cabeceras de la serie CT para el
     grid, RTSTRUCT para estructuras y contornos, RTPLAN opcional para la
     dosis total, y el JSON anterior (sin grid/structures) para goals y
     prescripción.

Cualquier error de carga se relanza como SnapshotError.
"""

from __future__ import annotations

import dataclasses
import json
import logging
import os
from collections import defaultdict
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import pydicom
from pydicom.errors import InvalidDicomError

from rocheck.core.geometry import contour_volume_cc
from rocheck.core.snapshot import (
    ClinicalGoal,
    GeometryGrid,
    PlanSnapshot,
    PrescriptionStatus,
    PrescriptionTarget,
    Structure,
)
from rocheck.errors import SnapshotError

logger = logging.getLogger("rocheck.core.build_snapshot")

PathLike = Union[str, Path]


# ---------------------------------------------------------
# JSON → snapshot
# ---------------------------------------------------------

def _triplet(name: str, value: Any, cast) -> Tuple:
    if not isinstance(value, (list, tuple)) or len(value) != 3:
        raise SnapshotError(f"'{name}' debe tener 3 componentes", source="grid")
    try:
        return tuple(cast(v) for v in value)
    except (TypeError, ValueError):
        raise SnapshotError(f"'{name}' contiene valores no numéricos", source="grid") from None


def _grid_from_dict(data: Mapping[str, Any]) -> GeometryGrid:
    if not isinstance(data, Mapping):
        raise SnapshotError("'grid' debe ser un objeto JSON", source="grid")
    grid = GeometryGrid(
        origin=_triplet("origin", data.get("origin"), float),
        resolution=_triplet("resolution", data.get("resolution"), float),
        size=_triplet("size", data.get("size"), int),
    )
    if any(r <= 0 for r in grid.resolution) or any(n <= 0 for n in grid.size):
        raise SnapshotError("Resolución y tamaño del grid deben ser positivos", source="grid")
    return grid


def _structure_from_dict(
    data: Mapping[str, Any],
    grid: Optional[GeometryGrid],
    high_res_ids: frozenset,
) -> Structure:
    if not isinstance(data, Mapping):
        raise SnapshotError("Cada estructura debe ser un objeto JSON", source="structures")
    sid = str(data.get("id") or "").strip()
    if not sid:
        raise SnapshotError("Estructura sin 'id'", source="structures")

    raw_contours = data.get("contours") or {}
    if not isinstance(raw_contours, Mapping):
        raise SnapshotError(
            f"'contours' de '{sid}' debe ser un objeto {{slice: [polígonos]}}",
            source="structures",
        )

    contours: Dict[int, List[Any]] = {}
    for k, polys in raw_contours.items():
        try:
            contours[int(k)] = list(polys)
        except (TypeError, ValueError):
            raise SnapshotError(
                f"Índice de slice inválido '{k}' en la estructura '{sid}'",
                source="structures",
            ) from None

    try:
        structure = Structure.from_contours(
            sid,
            dicom_type=str(data.get("dicom_type") or ""),
            contours=contours,
            is_high_resolution=bool(data.get("is_high_resolution", False)) or sid.casefold() in high_res_ids,
            has_segment=data.get("has_segment"),
        )
    except ValueError as exc:
        raise SnapshotError(f"Contornos inválidos en '{sid}': {exc}", source="structures") from None

    if grid is not None:
        for k in structure.slice_indices():
            if not 0 <= k < grid.size[2]:
                raise SnapshotError(
                    f"Slice {k} de '{sid}' fuera del grid [0, {grid.size[2]})",
                    source="structures",
                )

    volume = data.get("volume_cc")
    if volume is None:
        thickness = grid.resolution[2] if grid is not None else 0.0
        volume = contour_volume_cc(structure, thickness)
    try:
        volume = float(volume)
    except (TypeError, ValueError):
        raise SnapshotError(f"volume_cc no numérico en '{sid}': {volume!r}", source="structures") from None
    return _with_volume(structure, volume)


def _with_volume(structure: Structure, volume_cc: float) -> Structure:
    return dataclasses.replace(structure, volume_cc=volume_cc)


def _check_unique_ids(structures: Sequence[Structure]) -> None:
    seen = set()
    for s in structures:
        key = s.id.casefold()
        if key in seen:
            raise SnapshotError(
                f"Id de estructura duplicado (sin distinguir mayúsculas): '{s.id}'",
                source="structures",
            )
        seen.add(key)


def _goal_from_dict(data: Mapping[str, Any]) -> ClinicalGoal:
    if not isinstance(data, Mapping):
        raise SnapshotError("Cada clinical goal debe ser un objeto JSON", source="clinical_goals")
    dose = data.get("dose") or {}
    value = dose.get("value") if isinstance(dose, Mapping) else None
    try:
        dose_value = None if value is None else float(value)
    except (TypeError, ValueError):
        raise SnapshotError(f"Dosis no numérica en clinical goal: {value!r}", source="clinical_goals") from None
    return ClinicalGoal(
        structure_id=data.get("structure_id"),
        objective_text=str(data.get("objective") or ""),
        measure_type=data.get("measure_type"),
        dose_value=dose_value,
        dose_unit=dose.get("unit") if isinstance(dose, Mapping) else None,
    )


def _list_section(data: Mapping[str, Any], key: str) -> Optional[List[Any]]:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, (list, tuple)):
        raise SnapshotError(f"'{key}' debe ser una lista", source=key)
    return list(value)


def _target_from_dict(data: Mapping[str, Any]) -> PrescriptionTarget:
    if not isinstance(data, Mapping):
        raise SnapshotError(
            "Cada target de prescripción debe ser un objeto JSON", source="prescription_targets"
        )
    return PrescriptionTarget(
        target_id=str(data.get("target_id") or ""),
        status=PrescriptionStatus.parse(data.get("status")),
    )


def _goals_and_prescription(data: Mapping[str, Any]):
    goals = None
    raw_goals = _list_section(data, "clinical_goals")
    if raw_goals is not None:
        goals = tuple(_goal_from_dict(g) for g in raw_goals)

    targets = tuple(
        _target_from_dict(t) for t in _list_section(data, "prescription_targets") or ()
    )

    total = data.get("plan_total_dose_gy")
    try:
        total = None if total is None else float(total)
    except (TypeError, ValueError):
        raise SnapshotError(f"plan_total_dose_gy no numérico: {total!r}", source="plan") from None
    return goals, targets, total


def snapshot_from_dict(data: Mapping[str, Any]) -> PlanSnapshot:
    if not isinstance(data, Mapping):
        raise SnapshotError("El snapshot debe ser un objeto JSON", source="snapshot")

    grid = _grid_from_dict(data["grid"]) if data.get("grid") is not None else None
    high_res = frozenset(
        str(s).casefold() for s in _list_section(data, "high_resolution_structures") or ()
    )

    structures = None
    raw_structures = _list_section(data, "structures")
    if raw_structures is not None:
        structures = tuple(_structure_from_dict(s, grid, high_res) for s in raw_structures)
        _check_unique_ids(structures)

    goals, targets, total = _goals_and_prescription(data)

    return PlanSnapshot(
        structures=structures,
        grid=grid,
        goals=goals,
        plan_total_dose_gy=total,
        prescription_targets=targets,
        plan_id=str(data.get("plan_id") or ""),
    )


def _read_json(path: PathLike, source: str) -> Dict[str, Any]:
    p = Path(path)
    try:
        with p.open("r", encoding="utf-8") as f:
            return json.load(f)
    except (OSError, ValueError) as exc:
        logger.error("No se pudo leer %s: %s", p, exc)
        raise SnapshotError(
            f"No se pudo leer {p}: {exc}",
            source=source,
            suggested_action="Revisa la ruta y que el archivo sea JSON válido",
        ) from exc


def load_snapshot_json(path: PathLike) -> PlanSnapshot:
    snapshot = snapshot_from_dict(_read_json(path, "snapshot"))
    logger.info(
        "Snapshot cargado: %s (%d estructuras)", path, snapshot.structure_count()
    )
    return snapshot


# ---------------------------------------------------------
# DICOM → snapshot
# ---------------------------------------------------------

def _read_dataset(path: PathLike, stop_before_pixels: bool = False):
    try:
        return pydicom.dcmread(str(path), stop_before_pixels=stop_before_pixels, force=True)
    except (OSError, InvalidDicomError) as exc:
        raise SnapshotError(f"No se pudo leer DICOM {path}: {exc}", source="dicom") from exc


def grid_from_ct_datasets(datasets: Sequence[Any]) -> GeometryGrid:
    """GeometryGrid a partir de las cabeceras de una serie CT (cualquier orden)."""
    slices = [ds for ds in datasets if hasattr(ds, "ImagePositionPatient")]
    if not slices:
        raise SnapshotError("La serie CT no tiene slices con ImagePositionPatient", source="ct")

    try:
        slices.sort(key=lambda ds: float(ds.ImagePositionPatient[2]))
        first = slices[0]
        x0, y0, z0 = (float(v) for v in first.ImagePositionPatient)

        # PixelSpacing = [espaciado entre filas (y), espaciado entre columnas (x)]
        row_spacing, col_spacing = (float(v) for v in first.PixelSpacing)
        if len(slices) > 1:
            dz = (float(slices[-1].ImagePositionPatient[2]) - z0) / (len(slices) - 1)
        else:
            dz = float(getattr(first, "SliceThickness", 1.0) or 1.0)

        grid = GeometryGrid(
            origin=(x0, y0, z0),
            resolution=(col_spacing, row_spacing, dz),
            size=(int(first.Columns), int(first.Rows), len(slices)),
        )
    except (AttributeError, TypeError, ValueError, IndexError) as exc:
        raise SnapshotError(
            f"Cabeceras CT incompletas o inválidas: {exc}",
            source="ct",
            suggested_action="Comprueba ImagePositionPatient, PixelSpacing, Rows y Columns de la serie",
        ) from None

    if any(r <= 0 for r in grid.resolution) or any(n <= 0 for n in grid.size):
        raise SnapshotError("Resolución y tamaño del grid CT deben ser positivos", source="ct")
    return grid


def load_grid_from_ct_folder(ct_folder: PathLike) -> GeometryGrid:
    """
    Lee sólo las cabeceras (stop_before_pixels) de los CT de una carpeta.
    Los archivos que no son CT se ignoran.
    """
    if not os.path.isdir(ct_folder):
        raise SnapshotError(f"No existe la carpeta CT: {ct_folder}", source="ct")

    datasets = []
    for name in sorted(os.listdir(ct_folder)):
        path = os.path.join(ct_folder, name)
        if not os.path.isfile(path):
            continue
        try:
            ds = pydicom.dcmread(path, stop_before_pixels=True)
        except (OSError, InvalidDicomError):
            logger.debug("Archivo ignorado (no DICOM): %s", path)
            continue
        if getattr(ds, "Modality", "CT") == "CT":
            datasets.append(ds)

    grid = grid_from_ct_datasets(datasets)
    logger.info("Grid CT: size=%s resolution=%s", grid.size, grid.resolution)
    return grid


def structures_from_rtstruct_dataset(ds: Any, grid: GeometryGrid) -> Tuple[Structure, ...]:
    """
    Estructuras de un RTSTRUCT (pydicom Dataset):

      - nombre desde StructureSetROISequence (ROIName)
      - tipo desde RTROIObservationsSequence (RTROIInterpretedType)
      - contornos desde ROIContourSequence (ContourData → slice del grid)
      - volumen: área de los polígonos × grosor de slice
    """
    try:
        structures = _parse_rtstruct(ds, grid)
    except (AttributeError, TypeError, ValueError, IndexError) as exc:
        raise SnapshotError(f"RTSTRUCT inválido: {exc}", source="rtstruct") from None

    _check_unique_ids(structures)
    return tuple(structures)


def _parse_rtstruct(ds: Any, grid: GeometryGrid) -> List[Structure]:
    names: Dict[int, str] = {}
    for roi in getattr(ds, "StructureSetROISequence", []):
        names[int(roi.ROINumber)] = str(roi.ROIName)

    types: Dict[int, str] = {}
    for obs in getattr(ds, "RTROIObservationsSequence", []):
        types[int(obs.ReferencedROINumber)] = str(getattr(obs, "RTROIInterpretedType", "") or "")

    contours: Dict[int, Dict[int, List[np.ndarray]]] = defaultdict(lambda: defaultdict(list))
    for roi_contour in getattr(ds, "ROIContourSequence", []):
        number = int(roi_contour.ReferencedROINumber)
        for contour in getattr(roi_contour, "ContourSequence", []):
            data = np.array([float(v) for v in contour.ContourData], dtype=float)
            if data.size < 9 or data.size % 3 != 0:
                continue
            points = data.reshape(-1, 3)
            k = grid.slice_index_of(float(points[0, 2]))
            if not 0 <= k < grid.size[2]:
                logger.warning(
                    "Contorno de '%s' fuera del grid CT (z=%.2f); se omite",
                    names.get(number, number), points[0, 2],
                )
                continue
            contours[number][k].append(points)

    structures: List[Structure] = []
    for number, name in names.items():
        s = Structure.from_contours(
            name,
            dicom_type=types.get(number, ""),
            contours=contours.get(number, {}),
        )
        structures.append(_with_volume(s, contour_volume_cc(s, grid.resolution[2])))

    return structures


def load_structures_from_rtstruct(rtstruct_path: PathLike, grid: GeometryGrid) -> Tuple[Structure, ...]:
    ds = _read_dataset(rtstruct_path)
    if getattr(ds, "Modality", "RTSTRUCT") != "RTSTRUCT":
        raise SnapshotError(f"{rtstruct_path} no es un RTSTRUCT", source="rtstruct")
    structures = structures_from_rtstruct_dataset(ds, grid)
    logger.info("RTSTRUCT cargado: %s (%d estructuras)", rtstruct_path, len(structures))
    return structures


def plan_info_from_rtplan_dataset(ds: Any) -> Tuple[str, Optional[float]]:
    """
    (plan_id, dosis total en Gy) de un RTPLAN. La dosis sale de
    DoseReferenceSequence[0].TargetPrescriptionDose si existe.
    """
    plan_id = str(getattr(ds, "RTPlanLabel", "") or "")
    total = None
    if hasattr(ds, "DoseReferenceSequence") and len(ds.DoseReferenceSequence) > 0:
        drs = ds.DoseReferenceSequence[0]
        if hasattr(drs, "TargetPrescriptionDose"):
            try:
                total = float(drs.TargetPrescriptionDose)
            except (TypeError, ValueError):
                raise SnapshotError(
                    f"TargetPrescriptionDose no numérico: {drs.TargetPrescriptionDose!r}",
                    source="rtplan",
                ) from None
    return plan_id, total


def build_snapshot_from_dicom(
    ct_folder: PathLike,
    rtstruct_path: PathLike,
    goals_path: Optional[PathLike] = None,
    rtplan_path: Optional[PathLike] = None,
) -> PlanSnapshot:
    """
    Construye un PlanSnapshot a partir de:
      - CT (carpeta con la serie; sólo cabeceras)
      - RTSTRUCT (ruta)
      - RTPLAN (opcional): plan_id y dosis total
      - JSON de goals/prescripción (opcional); sin él no hay plan (goals=None)

    Los valores del JSON tienen prioridad sobre los del RTPLAN.
    """
    grid = load_grid_from_ct_folder(ct_folder)
    structures = load_structures_from_rtstruct(rtstruct_path, grid)

    plan_id, total = "", None
    if rtplan_path is not None:
        plan_id, total = plan_info_from_rtplan_dataset(_read_dataset(rtplan_path))
        logger.info("RTPLAN cargado: %s (Label=%s)", rtplan_path, plan_id or "N/A")

    goals = None
    targets: Tuple[PrescriptionTarget, ...] = ()
    if goals_path is not None:
        data = _read_json(goals_path, "goals")
        if not isinstance(data, Mapping):
            raise SnapshotError("El JSON de goals debe ser un objeto", source="goals")
        goals, targets, json_total = _goals_and_prescription(data)
        if json_total is not None:
            total = json_total
        plan_id = str(data.get("plan_id") or plan_id)

        high_res = frozenset(
            str(s).casefold() for s in _list_section(data, "high_resolution_structures") or ()
        )
        if high_res:
            structures = tuple(
                dataclasses.replace(s, is_high_resolution=True) if s.id.casefold() in high_res else s
                for s in structures
            )

    return PlanSnapshot(
        structures=structures,
        grid=grid,
        goals=goals,
        plan_total_dose_gy=total,
        prescription_targets=targets,
        plan_id=plan_id,
    )

