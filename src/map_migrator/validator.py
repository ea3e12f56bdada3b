"""Quality diagnostics for a fitted affine transform and its reference points."""
from __future__ import annotations

import logging
import math
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from .config import DEFAULT_THRESHOLDS, ValidatorThresholds
from .errors import ValidationError
from .linalg import EPSILON
from .transform import apply_transform
from .types import (
    AffineMatrix,
    AnomalyReport,
    Bounds,
    Correspondence,
    DistributionReport,
    PointLike,
    ScaleFactors,
    Suggestion,
    as_point,
)


log = logging.getLogger(__name__)

PairLike = Union[Correspondence, Mapping[str, Any]]
BoundsLike = Union[Bounds, Mapping[str, Any]]

_QUADRANTS = ("top-left", "top-right", "bottom-left", "bottom-right")


def as_correspondence(pair: PairLike) -> Correspondence:
    if isinstance(pair, Correspondence):
        return pair
    return Correspondence(source=as_point(pair["source"]), target=as_point(pair["target"]))


def as_bounds(value: BoundsLike) -> Bounds:
    bounds = value if isinstance(value, Bounds) else Bounds(
        width=float(value["width"]), height=float(value["height"])
    )
    if not (bounds.width > 0 and bounds.height > 0):
        raise ValidationError(
            f"Bounds must have positive width and height (got {bounds.width}x{bounds.height})",
            reason="bad_bounds",
        )
    return bounds


def calculate_rmse(pairs: Optional[Sequence[PairLike]], matrix: AffineMatrix) -> float:
    """Root-mean-square Euclidean residual in the target coordinate space."""

    if not pairs:
        return 0.0
    total = 0.0
    for raw in pairs:
        pair = as_correspondence(raw)
        mapped = apply_transform(pair.source, matrix)
        dx = mapped.x - pair.target.x
        dy = mapped.y - pair.target.y
        total += dx * dx + dy * dy
    return math.sqrt(total / len(pairs))


def detect_anomalies(
    matrix: AffineMatrix, thresholds: Optional[ValidatorThresholds] = None
) -> AnomalyReport:
    """Decompose *matrix* into scale, rotation and shear and flag outliers.

    ``shear`` is the cosine of the angle between the transformed x- and
    y-axes: 0 for any similarity transform, approaching ±1 as the axes
    collapse onto each other.
    """

    limits = thresholds or DEFAULT_THRESHOLDS
    a, b, c, d = matrix.a, matrix.b, matrix.c, matrix.d
    scale_x = math.hypot(a, c)
    scale_y = math.hypot(b, d)
    rotation = math.degrees(math.atan2(c, a))
    norm = scale_x * scale_y
    shear = (a * b + c * d) / norm if norm > EPSILON else 0.0
    det = matrix.determinant

    def _out_of_band(scale: float) -> bool:
        return scale < limits.min_scale or scale > limits.max_scale

    return AnomalyReport(
        scale_factors=ScaleFactors(x=scale_x, y=scale_y),
        rotation=rotation,
        shear=shear,
        determinant=det,
        has_negative_determinant=det < 0,
        has_extreme_scale=_out_of_band(scale_x) or _out_of_band(scale_y),
        has_extreme_shear=abs(shear) > limits.max_shear,
        is_degenerate=not math.isfinite(det) or abs(det) < EPSILON,
    )


def _cross(o: Tuple[float, float], a: Tuple[float, float], b: Tuple[float, float]) -> float:
    return (a[0] - o[0]) * (b[1] - o[1]) - (a[1] - o[1]) * (b[0] - o[0])


def convex_hull(points: Iterable[Tuple[float, float]]) -> List[Tuple[float, float]]:
    """Monotone chain hull, counter-clockwise, without repeated end point."""

    pts = sorted(set(points))
    if len(pts) <= 2:
        return pts
    lower: List[Tuple[float, float]] = []
    for p in pts:
        while len(lower) >= 2 and _cross(lower[-2], lower[-1], p) <= 0:
            lower.pop()
        lower.append(p)
    upper: List[Tuple[float, float]] = []
    for p in reversed(pts):
        while len(upper) >= 2 and _cross(upper[-2], upper[-1], p) <= 0:
            upper.pop()
        upper.append(p)
    return lower[:-1] + upper[:-1]


def polygon_area(vertices: Sequence[Tuple[float, float]]) -> float:
    if len(vertices) < 3:
        return 0.0
    acc = 0.0
    for i, (x1, y1) in enumerate(vertices):
        x2, y2 = vertices[(i + 1) % len(vertices)]
        acc += x1 * y2 - x2 * y1
    return abs(acc) * 0.5


def validate_point_distribution(
    points: Optional[Sequence[PointLike]],
    thresholds: Optional[ValidatorThresholds] = None,
) -> DistributionReport:
    limits = thresholds or DEFAULT_THRESHOLDS
    if not points or len(points) < 3:
        return DistributionReport(is_valid=True, warning=None, area_ratio=1.0)

    coords = [as_point(p).as_tuple() for p in points]
    xs = [x for x, _ in coords]
    ys = [y for _, y in coords]
    bbox_area = (max(xs) - min(xs)) * (max(ys) - min(ys))

    if len(coords) == 3:
        spanned = polygon_area(coords)
    else:
        spanned = polygon_area(convex_hull(coords))

    ratio = spanned / bbox_area if bbox_area > EPSILON else 0.0
    log.debug(
        "[distribution] %d points, hull=%.3f bbox=%.3f ratio=%.4f",
        len(coords),
        spanned,
        bbox_area,
        ratio,
    )

    if ratio < limits.collinear_ratio:
        return DistributionReport(
            is_valid=False,
            warning=(
                "Points are collinear or duplicated; "
                "choose reference points that form a triangle or wider shape"
            ),
            area_ratio=ratio,
        )
    if ratio < limits.clustered_ratio:
        return DistributionReport(
            is_valid=True,
            warning=(
                f"Points span only {ratio:.1%} of their bounding box; "
                "spread them out for a more stable fit"
            ),
            area_ratio=ratio,
        )
    return DistributionReport(is_valid=True, warning=None, area_ratio=ratio)


def _corners(bounds: Bounds) -> List[Tuple[str, float, float]]:
    w, h = bounds.width, bounds.height
    return [
        ("top-left", 0.0, 0.0),
        ("top-right", w, 0.0),
        ("bottom-left", 0.0, h),
        ("bottom-right", w, h),
    ]


def _quadrant(x: float, y: float, bounds: Bounds) -> str:
    vertical = "top" if y < bounds.height * 0.5 else "bottom"
    horizontal = "left" if x < bounds.width * 0.5 else "right"
    return f"{vertical}-{horizontal}"


def suggest_additional_points(
    points: Optional[Sequence[PointLike]], bounds: BoundsLike
) -> List[Suggestion]:
    """Propose where the next reference points should go.

    Image coordinates: ``y`` grows downwards, so "top" is ``y < height / 2``.
    """

    box = as_bounds(bounds)
    if not points:
        return [
            Suggestion(x=x, y=y, reason=f"{name} corner")
            for name, x, y in _corners(box)
        ]

    coords = [as_point(p) for p in points]
    covered = {_quadrant(p.x, p.y, box) for p in coords}
    centers = {
        "top-left": (box.width * 0.25, box.height * 0.25),
        "top-right": (box.width * 0.75, box.height * 0.25),
        "bottom-left": (box.width * 0.25, box.height * 0.75),
        "bottom-right": (box.width * 0.75, box.height * 0.75),
    }
    suggestions = [
        Suggestion(x=centers[name][0], y=centers[name][1], reason=f"no points in {name} quadrant")
        for name in _QUADRANTS
        if name not in covered
    ]
    if suggestions:
        return suggestions

    # every quadrant is covered; skip corners that already have a point nearby
    near = 0.05 * min(box.width, box.height)
    return [
        Suggestion(x=x, y=y, reason=f"{name} corner to stabilize the fit")
        for name, x, y in _corners(box)
        if all(math.hypot(p.x - x, p.y - y) > near for p in coords)
    ]


__all__ = [
    "as_bounds",
    "as_correspondence",
    "calculate_rmse",
    "convex_hull",
    "detect_anomalies",
    "polygon_area",
    "suggest_additional_points",
    "validate_point_distribution",
]
