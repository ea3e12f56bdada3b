from __future__ import annotations

import logging
from typing import Optional, Sequence, Tuple

import numpy as np

from .types import Point


log = logging.getLogger(__name__)

EPSILON = 1e-10


def design_matrix(points: Sequence[Point]) -> np.ndarray:
    """Rows ``[x, y, 1]`` for each point."""

    arr = np.empty((len(points), 3), dtype=float)
    for i, pt in enumerate(points):
        arr[i, 0] = pt.x
        arr[i, 1] = pt.y
        arr[i, 2] = 1.0
    return arr


def normal_equations(
    points: Sequence[Point], targets: np.ndarray
) -> Tuple[np.ndarray, np.ndarray]:
    """``AᵗA`` and ``Aᵗ·targets`` for the design matrix of *points*.

    *targets* is ``(N, k)``; the second result has one column per target axis.
    """

    A = design_matrix(points)
    return A.T @ A, A.T @ np.asarray(targets, dtype=float)


def solve_3x3(A: np.ndarray, b: np.ndarray) -> Optional[np.ndarray]:
    """Solve ``A @ v = b`` by Gaussian elimination with partial pivoting.

    Returns ``None`` when a pivot falls below :data:`EPSILON` relative to the
    largest entry of ``A`` (never below ``EPSILON`` absolute), i.e. when the
    system is singular or too close to singular to trust.
    """

    m = np.array(A, dtype=float)
    v = np.array(b, dtype=float)
    if m.shape != (3, 3) or v.shape != (3,):
        raise ValueError(f"Expected 3x3 system, got A{m.shape} b{v.shape}")

    tol = EPSILON * max(1.0, float(np.abs(m).max()))

    for col in range(3):
        pivot_row = col + int(np.argmax(np.abs(m[col:, col])))
        pivot = m[pivot_row, col]
        if abs(pivot) < tol:
            log.debug("[solve] pivot %.3e below %.3e in column %d", pivot, tol, col)
            return None
        if pivot_row != col:
            m[[col, pivot_row]] = m[[pivot_row, col]]
            v[[col, pivot_row]] = v[[pivot_row, col]]
        for row in range(col + 1, 3):
            factor = m[row, col] / m[col, col]
            m[row, col:] -= factor * m[col, col:]
            v[row] -= factor * v[col]

    out = np.zeros(3, dtype=float)
    for row in range(2, -1, -1):
        out[row] = (v[row] - m[row, row + 1:] @ out[row + 1:]) / m[row, row]
    return out


__all__ = ["EPSILON", "design_matrix", "normal_equations", "solve_3x3"]
