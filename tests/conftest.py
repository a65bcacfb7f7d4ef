"""Shared builders and fixtures for the rocheck test-suite."""

from __future__ import annotations

from typing import Iterable, Optional, Sequence

import numpy as np
import pytest

from rocheck.core.snapshot import (
    ClinicalGoal,
    GeometryGrid,
    PlanSnapshot,
    PrescriptionStatus,
    PrescriptionTarget,
    Structure,
)
from rocheck.qa.checks.context import ValidationContext, build_context
from rocheck.qa.config import ValidationConfig, get_validation_config


# 100 x 100 x 10 voxels, 1 mm in-plane, 2.5 mm slices -> sampling step 1 on every axis
GRID = GeometryGrid(origin=(0.0, 0.0, 0.0), resolution=(1.0, 1.0, 2.5), size=(100, 100, 10))


# ---------------------------------------------------------------------------
# Geometry builders
# ---------------------------------------------------------------------------

def square(x0: float, y0: float, x1: float, y1: float, z: float, step: float = 1.0) -> np.ndarray:
    """Closed square contour with a vertex every `step` mm (counter-clockwise)."""
    nx = max(1, int(round((x1 - x0) / step)))
    ny = max(1, int(round((y1 - y0) / step)))
    pts = []
    pts += [(x0 + i * (x1 - x0) / nx, y0) for i in range(nx)]
    pts += [(x1, y0 + j * (y1 - y0) / ny) for j in range(ny)]
    pts += [(x1 - i * (x1 - x0) / nx, y1) for i in range(nx)]
    pts += [(x0, y1 - j * (y1 - y0) / ny) for j in range(ny)]
    return np.array([(x, y, z) for x, y in pts], dtype=float)


def box(
    sid: str,
    dicom_type: str,
    x0: float,
    y0: float,
    x1: float,
    y1: float,
    slices: Iterable[int] = (3, 4, 5),
    grid: GeometryGrid = GRID,
    step: float = 1.0,
    **kwargs,
) -> Structure:
    """Structure made of the same square on each of `slices`."""
    contours = {k: [square(x0, y0, x1, y1, grid.slice_z_mm(k), step)] for k in slices}
    return Structure.from_contours(sid, dicom_type=dicom_type, contours=contours, **kwargs)


def bare(sid: str, dicom_type: str = "ORGAN", **kwargs) -> Structure:
    """Structure without contours (naming / goal / volume tests)."""
    return Structure(id=sid, dicom_type=dicom_type, **kwargs)


# ---------------------------------------------------------------------------
# Plan builders
# ---------------------------------------------------------------------------

def goal(
    sid: Optional[str],
    text: str,
    measure_type: Optional[str] = None,
    value: Optional[float] = None,
    unit: Optional[str] = None,
) -> ClinicalGoal:
    return ClinicalGoal(
        structure_id=sid,
        objective_text=text,
        measure_type=measure_type,
        dose_value=value,
        dose_unit=unit,
    )


def snapshot(
    structures: Optional[Sequence[Structure]] = (),
    goals: Optional[Sequence[ClinicalGoal]] = (),
    reviewed: Sequence[str] = (),
    grid: Optional[GeometryGrid] = GRID,
    total_dose_gy: Optional[float] = None,
    plan_id: str = "TestPlan",
) -> PlanSnapshot:
    return PlanSnapshot(
        structures=None if structures is None else tuple(structures),
        grid=grid,
        goals=None if goals is None else tuple(goals),
        plan_total_dose_gy=total_dose_gy,
        prescription_targets=tuple(
            PrescriptionTarget(t, PrescriptionStatus.REVIEWED) for t in reviewed
        ),
        plan_id=plan_id,
    )


def context(snap: PlanSnapshot, config: ValidationConfig) -> ValidationContext:
    return build_context(snap, config)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def config() -> ValidationConfig:
    """DEFAULT clinic profile, ignoring any overrides file on disk."""
    return get_validation_config("DEFAULT", use_overrides=False)
