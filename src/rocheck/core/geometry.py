# src/rocheck/core/geometry.py

"""
core.geometry
=============

Primitivas espaciales sobre contornos por slice:

  - is_contained(inner, outer, grid) → bool
  - overlaps(a, b, grid)             → bool
  - min_distance(a, b)               → (distancia_mm, punto_en_a) | None
  - polygon_area_mm2 / contour_volume_cc

Contención y solape son APROXIMADOS: sólo se visitan los slices y los
puntos del grid en un paso de muestreo (GeometryGrid.sample_steps()), así
que pueden no ver violaciones más pequeñas que ese paso.

Políticas conservadoras ante geometría degenerada (estructura vacía, sin
segmento o sin grid):

  - is_contained → True  ("no se puede comprobar, se asume OK")
  - overlaps     → False

min_distance es exacto: fuerza bruta O(vértices_a × vértices_b) por slice
compartido y, por encima de `kdtree_min_pairs` pares, un KDTree de scipy
sobre los vértices de b (mismo mínimo, mismo punto de a).
"""

from __future__ import annotations

from typing import Optional, Sequence, Tuple

import numpy as np
from scipy.spatial import KDTree

from rocheck.core.deadline import Deadline
from rocheck.core.snapshot import GeometryGrid, Structure

# Pares de vértices por slice a partir de los cuales se usa KDTree
DEFAULT_KDTREE_MIN_PAIRS = 250_000


# =====================================================
# Point-in-polygon (even-odd) vectorizado
# =====================================================

def points_in_polygon(px: np.ndarray, py: np.ndarray, polygon: np.ndarray) -> np.ndarray:
    """
    Máscara booleana de los puntos (px, py) que caen dentro de un polígono
    cerrado (regla even-odd, ray casting en +x). Sólo se usan x, y.
    """
    inside = np.zeros(px.shape, dtype=bool)
    if polygon is None or len(polygon) < 3:
        return inside

    xs = polygon[:, 0]
    ys = polygon[:, 1]

    # Sólo se evalúan los puntos dentro del bounding box del polígono
    bbox = (px >= xs.min()) & (px <= xs.max()) & (py >= ys.min()) & (py <= ys.max())
    if not bbox.any():
        return inside

    qx = px[bbox][:, None]
    qy = py[bbox][:, None]
    xi = xs[None, :]
    yi = ys[None, :]
    xj = np.roll(xs, 1)[None, :]
    yj = np.roll(ys, 1)[None, :]

    straddles = (yi > qy) != (yj > qy)
    with np.errstate(divide="ignore", invalid="ignore"):
        x_cross = (xj - xi) * (qy - yi) / (yj - yi) + xi
    crossings = straddles & (qx < x_cross)

    inside[bbox] = (np.count_nonzero(crossings, axis=1) % 2) == 1
    return inside


def points_in_contours(px: np.ndarray, py: np.ndarray, contours: Sequence[np.ndarray]) -> np.ndarray:
    """
    Puntos dentro del conjunto de polígonos de un slice. Los polígonos se
    combinan con XOR (un agujero contenido en otro contorno resta).
    """
    inside = np.zeros(px.shape, dtype=bool)
    for polygon in contours:
        inside ^= points_in_polygon(px, py, polygon)
    return inside


def _sample_plane(grid: GeometryGrid, step_xy: int) -> Tuple[np.ndarray, np.ndarray]:
    """Coordenadas (mm) de los puntos muestreados de un plano axial."""
    ix = np.arange(0, int(grid.size[0]), step_xy)
    iy = np.arange(0, int(grid.size[1]), step_xy)
    gx, gy = np.meshgrid(
        grid.origin[0] + ix * grid.resolution[0],
        grid.origin[1] + iy * grid.resolution[1],
        indexing="ij",
    )
    return gx.ravel(), gy.ravel()


def _sampled_slices(grid: GeometryGrid, step_z: int):
    return range(0, int(grid.size[2]), step_z)


def _is_degenerate(s: Optional[Structure]) -> bool:
    return s is None or s.is_empty or not s.has_segment


# =====================================================
# Contención / solape
# =====================================================

def is_contained(
    inner: Optional[Structure],
    outer: Optional[Structure],
    grid: Optional[GeometryGrid],
    deadline: Optional[Deadline] = None,
) -> bool:
    """
    True si ningún punto muestreado de `inner` queda fuera de `outer`.

    Vacuamente True cuando alguna estructura es degenerada o no hay grid.
    """
    if _is_degenerate(inner) or _is_degenerate(outer) or grid is None:
        return True

    step_xy, step_z = grid.sample_steps()
    px, py = _sample_plane(grid, step_xy)

    for k in _sampled_slices(grid, step_z):
        if not inner.has_contours_on_slice(k):
            continue
        if deadline is not None:
            deadline.check("is_contained")

        in_inner = points_in_contours(px, py, inner.contours_on_slice(k))
        if not in_inner.any():
            continue
        in_outer = points_in_contours(px, py, outer.contours_on_slice(k))
        if np.any(in_inner & ~in_outer):
            return False

    return True


def overlaps(
    a: Optional[Structure],
    b: Optional[Structure],
    grid: Optional[GeometryGrid],
    deadline: Optional[Deadline] = None,
) -> bool:
    """
    True en cuanto un punto muestreado cae dentro de ambas estructuras.

    False cuando alguna estructura es degenerada o no hay grid.
    """
    if _is_degenerate(a) or _is_degenerate(b) or grid is None:
        return False

    step_xy, step_z = grid.sample_steps()
    px, py = _sample_plane(grid, step_xy)

    for k in _sampled_slices(grid, step_z):
        if not (a.has_contours_on_slice(k) and b.has_contours_on_slice(k)):
            continue
        if deadline is not None:
            deadline.check("overlaps")

        in_a = points_in_contours(px, py, a.contours_on_slice(k))
        if not in_a.any():
            continue
        in_b = points_in_contours(px, py, b.contours_on_slice(k))
        if np.any(in_a & in_b):
            return True

    return False


# =====================================================
# Distancia mínima
# =====================================================

def _slice_min_distance(
    va: np.ndarray,
    vb: np.ndarray,
    kdtree_min_pairs: int,
) -> Tuple[float, int]:
    """(distancia mínima, índice del vértice de a) para un slice."""
    if len(va) * len(vb) >= kdtree_min_pairs:
        dists, _ = KDTree(vb).query(va)
    else:
        diff = va[:, None, :] - vb[None, :, :]
        dists = np.sqrt(np.sum(diff * diff, axis=2)).min(axis=1)
    i = int(np.argmin(dists))
    return float(dists[i]), i


def min_distance(
    a: Optional[Structure],
    b: Optional[Structure],
    deadline: Optional[Deadline] = None,
    kdtree_min_pairs: int = DEFAULT_KDTREE_MIN_PAIRS,
) -> Optional[Tuple[float, Tuple[float, float, float]]]:
    """
    Distancia euclídea 3D mínima entre vértices de a y b, considerando sólo
    los slices donde ambas tienen contornos.

    Devuelve (distancia_mm, punto_de_a) o None si no hay slice compartido.
    En caso de empate se conserva el primer punto de a (slices en orden
    creciente, vértices en orden de contorno).
    """
    if a is None or b is None:
        return None

    shared = sorted(set(a.slice_indices()) & set(b.slice_indices()))
    best: Optional[Tuple[float, Tuple[float, float, float]]] = None

    for k in shared:
        if deadline is not None:
            deadline.check("min_distance")

        va = a.vertices_on_slice(k)
        vb = b.vertices_on_slice(k)
        if len(va) == 0 or len(vb) == 0:
            continue

        dist, i = _slice_min_distance(va, vb, kdtree_min_pairs)
        if best is None or dist < best[0]:
            best = (dist, (float(va[i, 0]), float(va[i, 1]), float(va[i, 2])))

    return best


# =====================================================
# Área / volumen
# =====================================================

def polygon_area_mm2(polygon: np.ndarray) -> float:
    """Área (mm²) de un polígono por la fórmula del shoelace sobre x, y."""
    if polygon is None or len(polygon) < 3:
        return 0.0
    x = polygon[:, 0]
    y = polygon[:, 1]
    return 0.5 * abs(float(np.dot(x, np.roll(y, -1)) - np.dot(y, np.roll(x, -1))))


def contour_volume_cc(structure: Structure, slice_thickness_mm: float) -> float:
    """
    Volumen aproximado (cc) como suma de áreas por slice × grosor de slice.
    """
    area = 0.0
    for _, polygons in structure.contours_by_slice:
        for polygon in polygons:
            area += polygon_area_mm2(polygon)
    return area * float(slice_thickness_mm) / 1000.0
