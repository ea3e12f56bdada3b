from __future__ import annotations

from typing import List, Optional, Sequence

from .config import DEFAULT_THRESHOLDS, ValidatorThresholds
from .types import QualityReport, TransformResult
from .validator import (
    PairLike,
    as_correspondence,
    calculate_rmse,
    detect_anomalies,
    validate_point_distribution,
)


def grade_rmse(rmse: float, thresholds: Optional[ValidatorThresholds] = None) -> str:
    limits = thresholds or DEFAULT_THRESHOLDS
    if rmse < limits.rmse_good:
        return "good"
    if rmse < limits.rmse_warning:
        return "warning"
    return "error"


def assess_quality(
    pairs: Sequence[PairLike],
    result: TransformResult,
    thresholds: Optional[ValidatorThresholds] = None,
) -> QualityReport:
    """Collect every diagnostic the user should see before exporting."""

    limits = thresholds or DEFAULT_THRESHOLDS
    corr = [as_correspondence(p) for p in pairs]
    matrix = result.matrix

    rmse = calculate_rmse(corr, matrix)
    grade = grade_rmse(rmse, limits)
    anomalies = detect_anomalies(matrix, limits)
    distribution = validate_point_distribution([c.source for c in corr], limits)
    degenerate = result.is_degenerate or anomalies.is_degenerate

    warnings: List[str] = []
    if grade == "error":
        warnings.append(f"High RMSE error ({rmse:.2f}px) - point placement may be inaccurate")
    elif grade == "warning":
        warnings.append(f"Elevated RMSE ({rmse:.2f}px) - check reference point placement")

    sx, sy = anomalies.scale_factors.x, anomalies.scale_factors.y
    largest = max(sx, sy)
    if largest > 0 and abs(sx - sy) / largest > limits.aspect_tolerance:
        warnings.append("Unequal scaling detected - maps may have different aspect ratios")
    if abs(matrix.b + matrix.c) > limits.shear_warning and not anomalies.has_extreme_shear:
        warnings.append("Shear transformation detected - maps may be skewed")
    if anomalies.has_negative_determinant:
        warnings.append("Transformation includes reflection/mirroring")
    if anomalies.has_extreme_scale:
        warnings.append(
            f"Extreme scaling detected ({sx:.3f}x, {sy:.3f}x) - verify your reference points"
        )
    if anomalies.has_extreme_shear:
        warnings.append("Extreme shear detected - maps may be heavily skewed")
    if degenerate:
        warnings.append("Degenerate transformation - points may be collinear")
    if distribution.warning:
        warnings.append(distribution.warning)

    return QualityReport(
        rmse=rmse,
        rmse_grade=grade,
        anomalies=anomalies,
        distribution=distribution,
        is_degenerate=degenerate,
        warnings=tuple(warnings),
    )


__all__ = ["assess_quality", "grade_rmse"]
