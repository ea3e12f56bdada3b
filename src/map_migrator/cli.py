from __future__ import annotations

import json
import logging
import textwrap
import traceback
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

import typer
import yaml
from rich.console import Console
from rich.markup import escape
from rich.table import Table
from rich.theme import Theme

from .config import DEFAULT_CONFIG_PATH, load_config_with_defaults, thresholds_from_config
from .coords import clamp_to_bounds, out_of_bounds, to_space
from .quality import assess_quality
from .transform import batch_transform, calculate_affine_matrix, inverse_transform
from .types import AffineMatrix, Bounds, Correspondence, Point, QualityReport, TransformResult
from .validator import suggest_additional_points


log = logging.getLogger(__name__)


class Logger:
    def __init__(self, verbose: bool) -> None:
        self.verbose = verbose
        theme = Theme({
            "info": "cyan",
            "step": "bold cyan",
            "warning": "bold yellow",
            "error": "bold red",
        })
        self.console = Console(theme=theme, highlight=False)
        self.err_console = Console(theme=theme, highlight=False, stderr=True)

    def _print(self, message: str, style: str | None = None, *, err: bool = False) -> None:
        target = self.err_console if err else self.console
        if style:
            target.print(f"[{style}]{escape(message)}[/{style}]")
        else:
            target.print(escape(message))

    def info(self, message: str) -> None:
        self._print(message, style="info")

    def step(self, message: str) -> None:
        self.console.print(f"[step]▶ {escape(message)}")

    def warn(self, message: str) -> None:
        self._print(message, style="warning")

    def error(self, message: str) -> None:
        self._print(message, style="error", err=True)

    def debug(self, message: str) -> None:
        if self.verbose:
            self.console.print(f"[dim]{escape(message)}[/dim]")

    def status(self, message: str):
        return self.console.status(message)


class _LoggingBridge(logging.Handler):
    def __init__(self, cli_logger: Logger, level: int) -> None:
        super().__init__(level)
        self._cli_logger = cli_logger

    def emit(self, record: logging.LogRecord) -> None:  # type: ignore[override]
        msg = self.format(record)
        if record.levelno >= logging.ERROR:
            self._cli_logger.error(msg)
        elif record.levelno >= logging.WARNING:
            self._cli_logger.warn(msg)
        elif record.levelno >= logging.INFO:
            self._cli_logger.info(msg)
        else:
            self._cli_logger.debug(msg)


def _setup_logging(verbose: bool) -> Logger:
    logger = Logger(verbose)
    level = logging.DEBUG if verbose else logging.WARNING
    root = logging.getLogger("map_migrator")
    for handler in list(root.handlers):
        if isinstance(handler, _LoggingBridge):
            root.removeHandler(handler)
    root.addHandler(_LoggingBridge(logger, level))
    root.setLevel(level)
    root.propagate = False
    return logger


@dataclass
class PointFile:
    source: List[Point]
    target: List[Point]
    markers: List[Point]
    source_size: Optional[Bounds]
    target_size: Optional[Bounds]

    @property
    def pairs(self) -> List[Correspondence]:
        return [Correspondence(source=s, target=t) for s, t in zip(self.source, self.target)]


def _ensure_exists(path: Path, description: str) -> None:
    if not path.exists():
        raise FileNotFoundError(f"{description} not found: {path}")
    if path.is_dir():
        raise FileNotFoundError(f"{description} must be a file, not a directory: {path}")


def _read_mapping(path: Path, description: str) -> Any:
    _ensure_exists(path, description)
    try:
        return yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ValueError(f"{description} could not be parsed: {exc}") from exc


def _parse_size(raw: Any, label: str) -> Optional[Bounds]:
    if raw is None:
        return None
    if not isinstance(raw, Mapping) or "width" not in raw or "height" not in raw:
        raise ValueError(f"'{label}' must be a mapping with width and height")
    return Bounds(width=float(raw["width"]), height=float(raw["height"]))


def _load_point_file(
    path: Path, cfg: Mapping[str, Any], markers_path: Optional[Path] = None
) -> PointFile:
    data = _read_mapping(path, "Point file")
    if not isinstance(data, Mapping):
        raise ValueError("Point file root must be a mapping")
    space = data.get("coordinates", cfg.get("coordinates", "pixel"))
    source_size = _parse_size(data.get("source"), "source")
    target_size = _parse_size(data.get("target"), "target")

    raw_pairs = data.get("pairs") or []
    if not isinstance(raw_pairs, list):
        raise ValueError("'pairs' must be a list")
    for idx, pair in enumerate(raw_pairs):
        if not isinstance(pair, Mapping) or "source" not in pair or "target" not in pair:
            raise ValueError(f"pairs[{idx}] needs 'source' and 'target'")

    raw_markers: Any = data.get("markers") or []
    if markers_path is not None:
        loaded = _read_mapping(markers_path, "Marker file")
        raw_markers = loaded.get("markers", []) if isinstance(loaded, Mapping) else loaded
    if not isinstance(raw_markers, list):
        raise ValueError("'markers' must be a list")
    log.debug(
        "[cli] %s: %d pairs, %d markers, %s coordinates",
        path,
        len(raw_pairs),
        len(raw_markers),
        space,
    )

    return PointFile(
        source=to_space([p["source"] for p in raw_pairs], space, source_size, "source"),
        target=to_space([p["target"] for p in raw_pairs], space, target_size, "target"),
        markers=to_space(raw_markers, space, source_size, "markers"),
        source_size=source_size,
        target_size=target_size,
    )


def _load_cfg(config: Optional[Path], opts: Sequence[str], logger: Logger) -> Dict[str, Any]:
    path = config if config is not None else DEFAULT_CONFIG_PATH
    cfg = load_config_with_defaults(path, opts)
    config_yaml = yaml.safe_dump(cfg, sort_keys=False, default_flow_style=False).strip()
    logger.debug("Active configuration:\n" + textwrap.indent(config_yaml, "  "))
    return cfg


def _fit(points: PointFile, logger: Logger, *, quiet: bool = False) -> TransformResult:
    if not quiet:
        logger.step(f"Fitting affine transform to {len(points.source)} reference pairs")
    with logger.status("Solving normal equations"):
        return calculate_affine_matrix(points.source, points.target)


def _report_dict(result: TransformResult, report: QualityReport) -> Dict[str, Any]:
    return {
        "matrix": asdict(result.matrix),
        "determinant": result.determinant,
        "is_degenerate": result.is_degenerate,
        "rmse": report.rmse,
        "rmse_grade": report.rmse_grade,
        "anomalies": asdict(report.anomalies),
        "distribution": asdict(report.distribution),
        "warnings": list(report.warnings),
        "acceptable": report.is_acceptable,
    }


def _summarize(logger: Logger, result: TransformResult, report: QualityReport) -> None:
    anomalies = report.anomalies
    table = Table(title="Transform", show_header=False)
    table.add_column("metric")
    table.add_column("value", justify="right")
    table.add_row("RMSE", f"{report.rmse:.2f}px ({report.rmse_grade})")
    table.add_row("Scale X", f"{anomalies.scale_factors.x:.4f}")
    table.add_row("Scale Y", f"{anomalies.scale_factors.y:.4f}")
    table.add_row("Rotation", f"{anomalies.rotation:.2f}°")
    table.add_row("Shear", f"{anomalies.shear:.4f}")
    table.add_row("Determinant", f"{result.determinant:.6f}")
    logger.console.print(table)
    logger.info("Matrix:\n" + result.matrix.format())
    if report.warnings:
        logger.warn("Warnings:")
        for item in report.warnings:
            logger.warn(f"  - {item}")
    else:
        logger.info("No warnings")


def _write_output(path: Path, payload: Mapping[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    if path.suffix.lower() == ".json":
        path.write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")
    else:
        path.write_text(yaml.safe_dump(dict(payload), sort_keys=False), encoding="utf-8")


def _handle_known_exception(logger: Logger, exc: Exception, *, prefix: str | None = None) -> None:
    message = str(exc) if str(exc) else exc.__class__.__name__
    if prefix:
        message = f"{prefix}: {message}"
    logger.error(message)


app = typer.Typer(help="Realign map markers after replacing the map image")

_CONFIG_OPTION = typer.Option(None, "--config", help="YAML config with validator thresholds")
_OPTS_OPTION = typer.Option([], "--opts", help="Config override, e.g. anomalies.max_scale=8")
_VERBOSE_OPTION = typer.Option(False, "--verbose", "-v", help="Debug output")


def _run(logger: Logger, verbose: bool, body) -> None:
    try:
        body()
    except typer.Exit:
        raise
    except (FileNotFoundError, ValueError, RuntimeError) as exc:
        _handle_known_exception(logger, exc, prefix="Error")
        raise typer.Exit(code=2) from exc
    except Exception as exc:  # pragma: no cover - fallback path
        _handle_known_exception(logger, exc, prefix="Unexpected error")
        if verbose:
            traceback.print_exc()
        raise typer.Exit(code=1) from exc


@app.command("fit")
def fit(
    points_file: Path = typer.Argument(..., help="YAML/JSON file with reference pairs"),
    config: Optional[Path] = _CONFIG_OPTION,
    opts: List[str] = _OPTS_OPTION,
    as_json: bool = typer.Option(False, "--json", help="Print the report as JSON"),
    strict: bool = typer.Option(
        False, "--strict", help="Exit with code 3 when the fit is not acceptable"
    ),
    verbose: bool = _VERBOSE_OPTION,
) -> None:
    """Fit a transform and report its quality."""

    logger = _setup_logging(verbose)

    def body() -> None:
        cfg = _load_cfg(config, opts, logger)
        thresholds = thresholds_from_config(cfg)
        points = _load_point_file(points_file, cfg)
        result = _fit(points, logger, quiet=as_json)
        report = assess_quality(points.pairs, result, thresholds)
        if as_json:
            typer.echo(json.dumps(_report_dict(result, report), indent=2))
        else:
            _summarize(logger, result, report)
        if strict and not report.is_acceptable:
            raise typer.Exit(code=3)

    _run(logger, verbose, body)


@app.command("apply")
def apply(
    points_file: Path = typer.Argument(..., help="YAML/JSON file with reference pairs"),
    out: Path = typer.Option(..., "--out", help="Output file (.json or .yaml)"),
    markers: Optional[Path] = typer.Option(
        None, "--markers", help="Separate marker file; defaults to 'markers' in the point file"
    ),
    clamp: bool = typer.Option(
        True,
        "--clamp/--no-clamp",
        help="Clamp and round markers to the target image bounds",
    ),
    config: Optional[Path] = _CONFIG_OPTION,
    opts: List[str] = _OPTS_OPTION,
    verbose: bool = _VERBOSE_OPTION,
) -> None:
    """Transform all markers with the fitted matrix."""

    logger = _setup_logging(verbose)

    def body() -> None:
        cfg = _load_cfg(config, opts, logger)
        thresholds = thresholds_from_config(cfg)
        points = _load_point_file(points_file, cfg, markers)
        result = _fit(points, logger)
        if result.is_degenerate:
            raise ValueError("Degenerate transformation - points may be collinear")
        report = assess_quality(points.pairs, result, thresholds)
        for item in report.warnings:
            logger.warn(f"  - {item}")

        logger.step(f"Transforming {len(points.markers)} markers")
        transformed = batch_transform(points.markers, result.matrix)
        if points.target_size is not None:
            outside = out_of_bounds(transformed, points.target_size)
            if outside:
                suffix = " and will be clamped" if clamp else ""
                logger.warn(
                    f"{len(outside)} marker(s) fall outside the target map bounds{suffix}"
                )
            if clamp:
                transformed = clamp_to_bounds(transformed, points.target_size)

        _write_output(out, {
            "matrix": asdict(result.matrix),
            "rmse": report.rmse,
            "markers": [{"x": p.x, "y": p.y} for p in transformed],
        })
        logger.info(f"Wrote {len(transformed)} markers to {out}")

    _run(logger, verbose, body)


@app.command("suggest")
def suggest(
    points_file: Path = typer.Argument(..., help="YAML/JSON file with reference pairs"),
    config: Optional[Path] = _CONFIG_OPTION,
    verbose: bool = _VERBOSE_OPTION,
) -> None:
    """Suggest where to place further target reference points."""

    logger = _setup_logging(verbose)

    def body() -> None:
        cfg = _load_cfg(config, [], logger)
        points = _load_point_file(points_file, cfg)
        if points.target_size is None:
            raise ValueError("Point file needs 'target: {width, height}' for suggestions")
        suggestions = suggest_additional_points(points.target, points.target_size)
        if not suggestions:
            logger.info("Reference points already cover the map well")
        for item in suggestions:
            typer.echo(f"({item.x:.1f}, {item.y:.1f})  {item.reason}")

    _run(logger, verbose, body)


@app.command("invert")
def invert(
    points_file: Path = typer.Argument(..., help="YAML/JSON file with reference pairs"),
    verbose: bool = _VERBOSE_OPTION,
) -> None:
    """Print the inverse (target to source) of the fitted transform."""

    logger = _setup_logging(verbose)

    def body() -> None:
        cfg = _load_cfg(None, [], logger)
        points = _load_point_file(points_file, cfg)
        inverse: AffineMatrix = inverse_transform(_fit(points, logger).matrix)
        typer.echo(inverse.format())

    _run(logger, verbose, body)


if __name__ == "__main__":
    app()
