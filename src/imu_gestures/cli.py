"""imu-gestures command line.

Usage:
    imu-gestures inspect LIBRARY           — List gestures in a library snapshot
    imu-gestures calibrate LIBRARY         — Recompute DTW thresholds and save
    imu-gestures replay SAMPLES --library  — Run a sample recording through the engine
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional

try:
    import typer
except ImportError:
    raise ImportError("typer is required for CLI. Install with: pip install typer")

from imu_gestures.calibrator import Calibrator
from imu_gestures.config import EngineConfig
from imu_gestures.dtw import DTWMatcher
from imu_gestures.engine import GestureEngine
from imu_gestures.errors import GestureEngineError, ImportRejected
from imu_gestures.library import ClassifierKind, GestureLibrary
from imu_gestures.samples import IMUSample

app = typer.Typer(
    name="imu-gestures",
    help="🤚 Real-time IMU gesture recognition.",
    add_completion=False,
)


@app.callback()
def main_options(
    log_level: str = typer.Option("warning", "--log-level", help="Log level"),
):
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _read_json(path: str) -> dict:
    p = Path(path)
    if not p.exists():
        typer.echo(f"❌ File not found: {path}", err=True)
        raise typer.Exit(1)
    try:
        with open(p) as f:
            return json.load(f)
    except (OSError, ValueError) as e:
        typer.echo(f"❌ Bad JSON file {path}: {e}", err=True)
        raise typer.Exit(1)


def _load_config(path: Optional[str]) -> EngineConfig:
    if path is None:
        return EngineConfig()
    try:
        return EngineConfig.from_yaml(path)
    except (OSError, GestureEngineError) as e:
        typer.echo(f"❌ Bad config {path}: {e}", err=True)
        raise typer.Exit(1)


def _load_library(path: str) -> GestureLibrary:
    library = GestureLibrary()
    try:
        library.import_snapshot(_read_json(path))
    except ImportRejected as e:
        typer.echo(f"❌ Library {path} rejected:", err=True)
        for problem in e.problems:
            typer.echo(f"   - {problem}", err=True)
        raise typer.Exit(1)
    return library


def load_samples(path: str) -> list[IMUSample]:
    """Read samples from a JSON list, a {"samples": [...]} object, or JSON lines."""
    p = Path(path)
    if not p.exists():
        typer.echo(f"❌ File not found: {path}", err=True)
        raise typer.Exit(1)

    text = p.read_text()
    try:
        if p.suffix == ".jsonl":
            records = [json.loads(line) for line in text.splitlines() if line.strip()]
        else:
            data = json.loads(text)
            records = data["samples"] if isinstance(data, dict) else data
        return [IMUSample.from_dict(r) for r in records]
    except (ValueError, KeyError) as e:
        typer.echo(f"❌ Bad samples file {path}: {e}", err=True)
        raise typer.Exit(1)


@app.command()
def inspect(
    library_path: str = typer.Argument(..., metavar="LIBRARY", help="Library snapshot (.json)"),
):
    """Show the gestures stored in a library snapshot."""
    library = _load_library(library_path)
    typer.echo(f"📚 {len(library)} gestures in {library_path}\n")
    for g in library:
        status = "" if g.enabled else "  (disabled)"
        if g.classifier is ClassifierKind.DTW:
            lengths = [t.length for t in g.templates]
            detail = (
                f"{len(g.templates)} templates, {min(lengths)}-{max(lengths)} samples, "
                f"max_distance={g.max_distance:.4f}"
            )
        else:
            detail = f"rule={g.rule.kind.value} threshold={g.rule.threshold}"
        typer.echo(f"   {g.id:20s} {g.classifier.value:10s} {detail}{status}")


@app.command()
def calibrate(
    library_path: str = typer.Argument(..., metavar="LIBRARY", help="Library snapshot (.json)"),
    output: Optional[str] = typer.Option(None, "-o", "--output", help="Output path (default: overwrite input)"),
    margin: Optional[float] = typer.Option(None, "--margin", help="Safety margin (> 1)"),
    config_path: Optional[str] = typer.Option(None, "--config", help="Engine config YAML"),
):
    """Recompute each DTW gesture's max_distance from its templates."""
    config = _load_config(config_path)
    if margin is not None:
        config.calibrator.safety_margin = margin
    try:
        calibrator = Calibrator(DTWMatcher(config.dtw), config.calibrator)
    except GestureEngineError as e:
        typer.echo(f"❌ {e}", err=True)
        raise typer.Exit(1)

    library = _load_library(library_path)
    before = {g.id: g.max_distance for g in library}
    calibrator.calibrate(library)

    for g in library:
        if g.max_distance != before[g.id]:
            typer.echo(f"   {g.id:20s} {before[g.id]:.4f} → {g.max_distance:.4f}")
        else:
            typer.echo(f"   {g.id:20s} unchanged")

    out = Path(output or library_path)
    out.parent.mkdir(parents=True, exist_ok=True)
    with open(out, "w") as f:
        json.dump(library.export(), f, indent=2)
    typer.echo(f"💾 Saved to {out}")


@app.command()
def replay(
    samples_path: str = typer.Argument(..., metavar="SAMPLES", help="Samples (.json or .jsonl)"),
    library_path: str = typer.Option(..., "--library", help="Library snapshot (.json)"),
    config_path: Optional[str] = typer.Option(None, "--config", help="Engine config YAML"),
    batch: int = typer.Option(1, help="Samples fed per call"),
    as_json: bool = typer.Option(False, "--json", help="Print every result as a JSON line"),
    show_metrics: bool = typer.Option(False, "--metrics", help="Print Prometheus metrics at the end"),
):
    """Feed a sample recording through a started engine and print recognitions."""
    if batch <= 0:
        typer.echo("❌ --batch must be positive", err=True)
        raise typer.Exit(1)

    engine = GestureEngine(_load_config(config_path))
    library = _load_library(library_path)
    engine.import_library(library.export())
    samples = load_samples(samples_path)

    accepted = 0
    with engine:
        engine.start()
        for i in range(0, len(samples), batch):
            try:
                result = engine.feed_samples(samples[i:i + batch])
            except GestureEngineError as e:
                typer.echo(f"❌ {e}", err=True)
                raise typer.Exit(1)
            if result is None:
                continue
            if as_json:
                typer.echo(json.dumps(result.to_dict()))
            elif result.accepted:
                typer.echo(f"✋ t={result.timestamp:.0f}ms {result.gesture_id} ({result.confidence:.2f})")
            accepted += result.accepted

        if not as_json:
            typer.echo(f"\n📊 {len(samples)} samples, {accepted} gestures recognized")
        if show_metrics:
            typer.echo(engine.metrics.render())


def main():
    app()


if __name__ == "__main__":
    main()
