"""Coordinate handling at the caller boundary.

The engine itself works in pixel space. Marker stores that keep positions as
fractions of the image size convert them here, before fitting or applying.
Writers clamp transformed markers back onto the target image here as well.
"""
from __future__ import annotations

import math
from typing import List, Literal, Sequence

from .errors import ValidationError
from .types import Bounds, Point, PointLike, as_point


CoordinateSpace = Literal["pixel", "normalized"]


def ensure_finite(points: Sequence[PointLike], label: str = "points") -> List[Point]:
    out: List[Point] = []
    for idx, raw in enumerate(points):
        try:
            pt = as_point(raw)
        except (KeyError, TypeError, ValueError) as exc:
            raise ValidationError(
                f"{label}[{idx}] is not a point: {raw!r}", reason="bad_point"
            ) from exc
        if not (math.isfinite(pt.x) and math.isfinite(pt.y)):
            raise ValidationError(
                f"{label}[{idx}] has non-finite coordinates ({pt.x}, {pt.y})",
                reason="non_finite",
            )
        out.append(pt)
    return out


def to_pixels(points: Sequence[PointLike], width: float, height: float) -> List[Point]:
    if not (width > 0 and height > 0):
        raise ValidationError(
            f"Image size must be positive (got {width}x{height})", reason="bad_bounds"
        )
    return [Point(p.x * width, p.y * height) for p in map(as_point, points)]


def to_space(
    points: Sequence[PointLike],
    space: CoordinateSpace,
    size: Bounds | None,
    label: str = "points",
) -> List[Point]:
    """Validate *points* and bring them into pixel space."""

    checked = ensure_finite(points, label)
    if space == "pixel":
        return checked
    if space == "normalized":
        if size is None:
            raise ValidationError(
                f"Normalized {label} need the image width and height", reason="bad_bounds"
            )
        return to_pixels(checked, size.width, size.height)
    raise ValueError(f"Unknown coordinate space: {space!r}")


def out_of_bounds(points: Sequence[PointLike], bounds: Bounds) -> List[int]:
    """Indices of points outside ``[0, width] x [0, height]``."""

    return [
        idx
        for idx, pt in enumerate(map(as_point, points))
        if pt.x < 0 or pt.x > bounds.width or pt.y < 0 or pt.y > bounds.height
    ]


def clamp_to_bounds(
    points: Sequence[PointLike], bounds: Bounds, *, round_to_pixel: bool = True
) -> List[Point]:
    """Clamp points into ``[0, width] x [0, height]``.

    With *round_to_pixel* coordinates are rounded half up to whole pixels
    after clamping.
    """

    out: List[Point] = []
    for pt in map(as_point, points):
        x = float(min(max(pt.x, 0.0), bounds.width))
        y = float(min(max(pt.y, 0.0), bounds.height))
        if round_to_pixel:
            x = float(math.floor(x + 0.5))
            y = float(math.floor(y + 0.5))
        out.append(Point(x, y))
    return out


__all__ = [
    "CoordinateSpace",
    "clamp_to_bounds",
    "ensure_finite",
    "out_of_bounds",
    "to_pixels",
    "to_space",
]
