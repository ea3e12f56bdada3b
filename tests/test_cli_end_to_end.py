from __future__ import annotations

import json
import os
import subprocess
import sys
import textwrap
from pathlib import Path

import pytest
import yaml


def _run_cli(args: list[str], cwd: Path) -> subprocess.CompletedProcess[str]:
    env = os.environ.copy()
    project_root = Path(__file__).resolve().parents[1]
    src_path = project_root / "src"
    pythonpath = env.get("PYTHONPATH", "")
    new_path = str(src_path)
    if pythonpath:
        new_path = os.pathsep.join([new_path, pythonpath])
    env["PYTHONPATH"] = new_path
    env["COLUMNS"] = "200"
    return subprocess.run(
        [sys.executable, "-m", "map_migrator.cli", *args],
        cwd=str(cwd),
        env=env,
        text=True,
        capture_output=True,
    )


def _write(path: Path, content: str) -> Path:
    path.write_text(textwrap.dedent(content).lstrip(), encoding="utf-8")
    return path


@pytest.fixture
def scaled_points(tmp_path: Path) -> Path:
    return _write(
        tmp_path / "points.yaml",
        """
        source: {width: 100, height: 100}
        target: {width: 250, height: 250}
        pairs:
          - {source: [0, 0], target: [10, 20]}
          - {source: [100, 0], target: [210, 20]}
          - {source: [0, 100], target: [10, 220]}
        markers:
          - {x: 50, y: 50}
          - {x: 0, y: 0}
          - {x: 200, y: 10}
        """,
    )


def test_fit_json_report(tmp_path: Path, scaled_points: Path) -> None:
    proc = _run_cli(["fit", str(scaled_points), "--json"], tmp_path)

    assert proc.returncode == 0, proc.stderr
    report = json.loads(proc.stdout)
    assert report["matrix"]["a"] == pytest.approx(2.0)
    assert report["matrix"]["d"] == pytest.approx(2.0)
    assert report["matrix"]["e"] == pytest.approx(10.0)
    assert report["matrix"]["f"] == pytest.approx(20.0)
    assert report["determinant"] == pytest.approx(4.0)
    assert report["rmse"] == pytest.approx(0.0, abs=1e-6)
    assert report["acceptable"] is True
    assert report["is_degenerate"] is False


def test_fit_summary(tmp_path: Path, scaled_points: Path) -> None:
    proc = _run_cli(["fit", str(scaled_points)], tmp_path)

    assert proc.returncode == 0, proc.stderr
    assert "RMSE" in proc.stdout
    assert "2.000000" in proc.stdout
    assert "No warnings" in proc.stdout


def test_fit_too_few_pairs(tmp_path: Path) -> None:
    points = _write(
        tmp_path / "few.yaml",
        """
        pairs:
          - {source: [0, 0], target: [0, 0]}
          - {source: [1, 1], target: [2, 2]}
        """,
    )

    proc = _run_cli(["fit", str(points)], tmp_path)

    assert proc.returncode == 2
    assert "Minimum 3 point pairs" in proc.stderr


def test_fit_strict_rejects_collinear_points(tmp_path: Path) -> None:
    points = _write(
        tmp_path / "collinear.json",
        json.dumps({
            "pairs": [
                {"source": {"x": 0, "y": 0}, "target": {"x": 0, "y": 0}},
                {"source": {"x": 100, "y": 100}, "target": {"x": 100, "y": 0}},
                {"source": {"x": 200, "y": 200}, "target": {"x": 200, "y": 0}},
            ]
        }),
    )

    lenient = _run_cli(["fit", str(points)], tmp_path)
    strict = _run_cli(["fit", str(points), "--strict"], tmp_path)

    assert lenient.returncode == 0, lenient.stderr
    assert "collinear" in lenient.stdout
    assert strict.returncode == 3


def test_fit_config_override(tmp_path: Path, scaled_points: Path) -> None:
    proc = _run_cli(
        ["fit", str(scaled_points), "--json", "--opts", "anomalies.max_scale=1.5"],
        tmp_path,
    )

    assert proc.returncode == 0, proc.stderr
    report = json.loads(proc.stdout)
    assert report["anomalies"]["has_extreme_scale"] is True


def test_apply_writes_markers(tmp_path: Path, scaled_points: Path) -> None:
    out = tmp_path / "out" / "markers.json"

    proc = _run_cli(["apply", str(scaled_points), "--out", str(out)], tmp_path)

    assert proc.returncode == 0, proc.stderr
    payload = json.loads(out.read_text(encoding="utf-8"))
    assert payload["markers"][0] == pytest.approx({"x": 110.0, "y": 120.0})
    assert payload["markers"][1] == pytest.approx({"x": 10.0, "y": 20.0})
    # (200, 10) maps to (410, 40), beyond the 250px wide target
    assert payload["markers"][2] == {"x": 250.0, "y": 40.0}
    assert len(payload["markers"]) == 3
    assert "1 marker(s) fall outside the target map bounds and will be clamped" in proc.stdout


def test_apply_rounds_clamped_markers(tmp_path: Path) -> None:
    points = _write(
        tmp_path / "points.yaml",
        """
        target: {width: 100, height: 100}
        pairs:
          - {source: [0, 0], target: [0.4, 0.0]}
          - {source: [100, 0], target: [100.4, 0.0]}
          - {source: [0, 100], target: [0.4, 100.0]}
        markers:
          - {x: 10.2, y: 20.6}
          - {x: -30, y: 50}
        """,
    )
    out = tmp_path / "out.json"

    proc = _run_cli(["apply", str(points), "--out", str(out)], tmp_path)

    assert proc.returncode == 0, proc.stderr
    markers = json.loads(out.read_text(encoding="utf-8"))["markers"]
    assert markers == [{"x": 11.0, "y": 21.0}, {"x": 0.0, "y": 50.0}]


def test_apply_no_clamp_keeps_raw_positions(tmp_path: Path, scaled_points: Path) -> None:
    out = tmp_path / "raw.json"

    proc = _run_cli(["apply", str(scaled_points), "--out", str(out), "--no-clamp"], tmp_path)

    assert proc.returncode == 0, proc.stderr
    payload = json.loads(out.read_text(encoding="utf-8"))
    assert payload["markers"][2] == pytest.approx({"x": 410.0, "y": 40.0})
    assert "outside the target map bounds" in proc.stdout
    assert "will be clamped" not in proc.stdout


def test_apply_normalized_coordinates(tmp_path: Path) -> None:
    points = _write(
        tmp_path / "normalized.yaml",
        """
        coordinates: normalized
        source: {width: 1000, height: 500}
        target: {width: 2000, height: 1000}
        pairs:
          - {source: [0.0, 0.0], target: [0.0, 0.0]}
          - {source: [1.0, 0.0], target: [1.0, 0.0]}
          - {source: [0.0, 1.0], target: [0.0, 1.0]}
        """,
    )
    markers = _write(tmp_path / "markers.yaml", "markers:\n  - {x: 0.5, y: 0.5}\n")
    out = tmp_path / "result.yaml"

    proc = _run_cli(
        ["apply", str(points), "--markers", str(markers), "--out", str(out)], tmp_path
    )

    assert proc.returncode == 0, proc.stderr
    payload = yaml.safe_load(out.read_text(encoding="utf-8"))
    assert payload["matrix"]["a"] == pytest.approx(2.0)
    assert payload["markers"] == [pytest.approx({"x": 1000.0, "y": 500.0})]


def test_suggest_lists_empty_quadrants(tmp_path: Path, scaled_points: Path) -> None:
    proc = _run_cli(["suggest", str(scaled_points)], tmp_path)

    assert proc.returncode == 0, proc.stderr
    assert "no points in bottom-right quadrant" in proc.stdout


def test_invert_prints_inverse(tmp_path: Path, scaled_points: Path) -> None:
    proc = _run_cli(["invert", str(scaled_points)], tmp_path)

    assert proc.returncode == 0, proc.stderr
    assert "0.500000" in proc.stdout
    assert "-5.000000" in proc.stdout


def test_invert_singular_fails(tmp_path: Path) -> None:
    points = _write(
        tmp_path / "collinear.yaml",
        """
        pairs:
          - {source: [0, 0], target: [0, 0]}
          - {source: [100, 100], target: [100, 0]}
          - {source: [200, 200], target: [200, 0]}
        """,
    )

    proc = _run_cli(["invert", str(points)], tmp_path)

    assert proc.returncode == 2
    assert "singular" in proc.stderr


def test_missing_point_file(tmp_path: Path) -> None:
    proc = _run_cli(["fit", str(tmp_path / "nope.yaml")], tmp_path)

    assert proc.returncode == 2
    assert "not found" in proc.stderr


def test_logger_status_is_a_rich_spinner() -> None:
    sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))
    from rich.status import Status

    from map_migrator.cli import Logger

    status = Logger(verbose=False).status("Solving normal equations")

    assert isinstance(status, Status)
    with status:
        pass
