from __future__ import annotations

import logging
import math
from typing import List, Sequence

import numpy as np

from .errors import SingularMatrixError, ValidationError
from .linalg import EPSILON, design_matrix, normal_equations, solve_3x3
from .types import AffineMatrix, Point, PointLike, TransformResult, as_point


log = logging.getLogger(__name__)

MIN_POINT_PAIRS = 3


def _check_pairs(source: Sequence[PointLike], target: Sequence[PointLike]) -> None:
    if len(source) < MIN_POINT_PAIRS:
        raise ValidationError(
            f"Minimum {MIN_POINT_PAIRS} point pairs required (got {len(source)})",
            reason="too_few_pairs",
        )
    if len(source) != len(target):
        raise ValidationError(
            "Source and target point arrays must have the same length "
            f"({len(source)} != {len(target)})",
            reason="length_mismatch",
        )


def calculate_affine_matrix(
    source_points: Sequence[PointLike],
    target_points: Sequence[PointLike],
) -> TransformResult:
    """Least-squares affine fit mapping *source_points* onto *target_points*.

    Source points are shifted to their centroid first so the normal matrix
    stays well scaled for pixel coordinates far from the origin; ``e`` and
    ``f`` are recovered from the centroid afterwards. Both axes share the
    normal matrix of the design matrix ``[x, y, 1]``; ``[a, b, e]`` and
    ``[c, d, f]`` are solved separately. Collinear or duplicate source
    points make it singular. The fit then falls back to the minimum-norm
    least-squares solution and the result is flagged degenerate instead of
    carrying NaNs.
    """

    _check_pairs(source_points, target_points)
    src = [as_point(p) for p in source_points]
    dst = np.array([as_point(p).as_tuple() for p in target_points], dtype=float)

    cx = sum(p.x for p in src) / len(src)
    cy = sum(p.y for p in src) / len(src)
    centred = [Point(p.x - cx, p.y - cy) for p in src]

    AtA, Atb = normal_equations(centred, dst)
    row_x = solve_3x3(AtA, Atb[:, 0])
    row_y = solve_3x3(AtA, Atb[:, 1])

    solved = row_x is not None and row_y is not None
    if not solved:
        log.debug("[affine] normal matrix singular, using minimum-norm least squares")
        coeffs, *_ = np.linalg.lstsq(design_matrix(centred), dst, rcond=None)
        row_x, row_y = coeffs[:, 0], coeffs[:, 1]

    a, b, e0 = (float(v) for v in row_x)
    c, d, f0 = (float(v) for v in row_y)
    matrix = AffineMatrix(
        a=a, b=b, e=e0 - a * cx - b * cy,
        c=c, d=d, f=f0 - c * cx - d * cy,
    )
    det = matrix.determinant
    degenerate = not solved or not math.isfinite(det) or abs(det) < EPSILON
    if degenerate:
        log.warning(
            "[affine] degenerate transform from %d pairs (det=%.3e); "
            "source points may be collinear or duplicated",
            len(src),
            det,
        )
    else:
        log.debug("[affine] fit %d pairs, det=%.6f", len(src), det)
    return TransformResult(matrix=matrix, determinant=det, is_degenerate=degenerate)


def apply_transform(point: PointLike, matrix: AffineMatrix) -> Point:
    p = as_point(point)
    return Point(
        matrix.a * p.x + matrix.b * p.y + matrix.e,
        matrix.c * p.x + matrix.d * p.y + matrix.f,
    )


def transform_array(pts: np.ndarray, matrix: AffineMatrix) -> np.ndarray:
    """Apply *matrix* to an ``(N, 2)`` array in one vectorised step."""

    arr = np.asarray(pts, dtype=float).reshape(-1, 2)
    M = matrix.as_array()
    return arr @ M[:, :2].T + M[:, 2]


def batch_transform(points: Sequence[PointLike], matrix: AffineMatrix) -> List[Point]:
    if len(points) == 0:
        return []
    arr = np.empty((len(points), 2), dtype=float)
    for i, raw in enumerate(points):
        p = as_point(raw)
        arr[i, 0] = p.x
        arr[i, 1] = p.y
    out = transform_array(arr, matrix)
    return [Point(float(x), float(y)) for x, y in out]


def inverse_transform(matrix: AffineMatrix) -> AffineMatrix:
    a, b, c, d, e, f = matrix.a, matrix.b, matrix.c, matrix.d, matrix.e, matrix.f
    det = a * d - b * c
    if not math.isfinite(det) or abs(det) < EPSILON:
        raise SingularMatrixError(det)
    return AffineMatrix(
        a=d / det,
        b=-b / det,
        c=-c / det,
        d=a / det,
        e=(b * f - d * e) / det,
        f=(c * e - a * f) / det,
    )


__all__ = [
    "MIN_POINT_PAIRS",
    "apply_transform",
    "batch_transform",
    "calculate_affine_matrix",
    "inverse_transform",
    "transform_array",
]
