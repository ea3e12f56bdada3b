from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, List, Mapping, Optional, Tuple, Union

import numpy as np


@dataclass(frozen=True)
class Point:
    x: float; y: float

    def as_tuple(self) -> Tuple[float, float]:
        return (self.x, self.y)


PointLike = Union[Point, Tuple[float, float], List[float], Mapping[str, Any]]


def as_point(value: PointLike) -> Point:
    """Coerce ``(x, y)`` sequences and ``{"x": .., "y": ..}`` mappings to :class:`Point`."""

    if isinstance(value, Point):
        return value
    if isinstance(value, Mapping):
        return Point(float(value["x"]), float(value["y"]))
    x, y = value
    return Point(float(x), float(y))


@dataclass(frozen=True)
class Correspondence:
    source: Point
    target: Point


@dataclass(frozen=True)
class AffineMatrix:
    """``x' = a*x + b*y + e`` and ``y' = c*x + d*y + f``."""

    a: float; b: float; c: float; d: float; e: float; f: float

    @classmethod
    def identity(cls) -> "AffineMatrix":
        return cls(a=1.0, b=0.0, c=0.0, d=1.0, e=0.0, f=0.0)

    @classmethod
    def from_array(cls, arr: np.ndarray) -> "AffineMatrix":
        m = np.asarray(arr, dtype=float)
        if m.shape not in ((2, 3), (3, 3)):
            raise ValueError(f"Affine matrix must be 2x3 or 3x3, got {m.shape}")
        return cls(
            a=float(m[0, 0]), b=float(m[0, 1]), e=float(m[0, 2]),
            c=float(m[1, 0]), d=float(m[1, 1]), f=float(m[1, 2]),
        )

    @property
    def determinant(self) -> float:
        return self.a * self.d - self.b * self.c

    def as_array(self) -> np.ndarray:
        return np.array([[self.a, self.b, self.e], [self.c, self.d, self.f]], dtype=float)

    def is_finite(self) -> bool:
        return all(math.isfinite(v) for v in (self.a, self.b, self.c, self.d, self.e, self.f))

    def format(self) -> str:
        rows = ((self.a, self.b, self.e), (self.c, self.d, self.f))
        lines = ["[" + ", ".join(f"{v:12.6f}" for v in row) + "]" for row in rows]
        lines.append("[" + ", ".join(f"{v:12d}" for v in (0, 0, 1)) + "]")
        return "\n".join(lines)


@dataclass(frozen=True)
class TransformResult:
    matrix: AffineMatrix
    determinant: float
    is_degenerate: bool


@dataclass(frozen=True)
class ScaleFactors:
    x: float; y: float


@dataclass(frozen=True)
class AnomalyReport:
    scale_factors: ScaleFactors
    rotation: float                # degrees
    shear: float
    determinant: float
    has_negative_determinant: bool
    has_extreme_scale: bool
    has_extreme_shear: bool
    is_degenerate: bool


@dataclass(frozen=True)
class DistributionReport:
    is_valid: bool
    warning: Optional[str]
    area_ratio: float


@dataclass(frozen=True)
class Bounds:
    width: float
    height: float


@dataclass(frozen=True)
class Suggestion:
    x: float
    y: float
    reason: str


@dataclass(frozen=True)
class QualityReport:
    rmse: float
    rmse_grade: str                # "good", "warning", "error"
    anomalies: AnomalyReport
    distribution: DistributionReport
    is_degenerate: bool
    warnings: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def is_acceptable(self) -> bool:
        return (
            not self.is_degenerate
            and self.distribution.is_valid
            and self.rmse_grade != "error"
        )
