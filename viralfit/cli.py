from __future__ import annotations

import asyncio
import json
import logging
import tempfile
from dataclasses import asdict
from pathlib import Path
from time import perf_counter
from typing import Callable, TypeVar

import typer

from viralfit.config import Settings, load_settings
from viralfit.errors import DegradedSignalError, FatalExtractionError, ViralFitError
from viralfit.features.asr import build_transcriber, extract_audio_features
from viralfit.features.scenes import detect_scene_boundaries
from viralfit.ingest.probe import probe_video
from viralfit.logging_config import configure_logging
from viralfit.models import PipelineState, Platform
from viralfit.pipeline import AnalysisPipeline
from viralfit.scoring.hook import hook_window

app = typer.Typer(help="Short-form video virality fitness analysis.")
config_app = typer.Typer(help="Configuration commands.")
features_app = typer.Typer(help="Single-stage feature extraction commands.")

app.add_typer(config_app, name="config")
app.add_typer(features_app, name="features")

logger = logging.getLogger(__name__)

T = TypeVar("T")

STAGE_LABELS = {
    PipelineState.SAMPLING: "Sample video, audio and scenes",
    PipelineState.SCORING: "Score hook, pacing, emotion and structure",
    PipelineState.FUSING: "Fuse platform fit",
    PipelineState.SUGGESTING: "Request suggestions",
}
STAGE_ORDER = list(STAGE_LABELS)


def _run_with_progress(label: str, work: Callable[[], T]) -> T:
    typer.echo(f"{label}...", err=True)
    started_at = perf_counter()
    try:
        result = work()
    except Exception:
        elapsed = perf_counter() - started_at
        typer.echo(f"{label} failed after {elapsed:.1f}s", err=True)
        raise
    elapsed = perf_counter() - started_at
    typer.echo(f"{label} done in {elapsed:.1f}s", err=True)
    return result


def _echo_stage(state: PipelineState) -> None:
    if state in STAGE_LABELS:
        index = STAGE_ORDER.index(state) + 1
        typer.echo(f"[{index}/{len(STAGE_ORDER)}] {STAGE_LABELS[state]}...", err=True)
    elif state is PipelineState.FAILED:
        typer.echo("Analysis failed during sampling.", err=True)


def _bootstrap(config_path: Path) -> Settings:
    settings = load_settings(config_path)
    configure_logging(settings.logging)
    logger.debug("Loaded runtime settings from %s", config_path)
    return settings


ConfigOption = typer.Option(
    Path("configs/default.yaml"),
    "--config",
    "-c",
    envvar="VIRALFIT_CONFIG",
    help="Path to YAML configuration file.",
)


@config_app.command("show")
def show_config(config_path: Path = ConfigOption) -> None:
    """Print resolved runtime configuration."""

    settings = _bootstrap(config_path)
    typer.echo(json.dumps(settings.model_dump(mode="json"), indent=2))


@app.command("run")
def run_analysis(
    video_path: str,
    config_path: Path = ConfigOption,
    platform: Platform | None = typer.Option(None, help="Target platform for pacing expectations."),
    language: str | None = typer.Option(None, help="Language for generated suggestions."),
    output: Path | None = typer.Option(None, help="Optional path to write the report JSON."),
) -> None:
    """Analyze a video and print its virality fitness report."""

    settings = _bootstrap(config_path)
    pipeline = AnalysisPipeline(settings, on_state=_echo_stage)

    try:
        report = _run_with_progress(
            "Analyze video",
            lambda: asyncio.run(pipeline.run(video_path, target_platform=platform, target_language=language)),
        )
    except (ViralFitError, OSError) as exc:
        logger.error("Analysis failed: %s", exc)
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from exc

    payload = json.dumps({"status": "ok", **report.to_dict()}, indent=2, ensure_ascii=False)
    if output is not None:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(payload, encoding="utf-8")
        logger.info("Report written to %s", output)
    typer.echo(payload)


@features_app.command("scenes")
def scenes(
    video_path: str,
    config_path: Path = ConfigOption,
    threshold: float | None = typer.Option(None, help="Scene-change threshold in [0, 1]; lower is more sensitive."),
) -> None:
    """Detect scene cuts and print their timestamps."""

    settings = _bootstrap(config_path)

    async def _detect() -> dict[str, object]:
        asset = await probe_video(video_path)
        boundaries = await detect_scene_boundaries(
            asset,
            threshold=threshold if threshold is not None else settings.scenes.threshold,
            timeout_seconds=settings.scenes.timeout_seconds,
        )
        return {
            "status": "ok",
            "video_path": str(asset.path),
            "duration_seconds": asset.duration_seconds,
            "scene_boundaries": boundaries,
        }

    try:
        result = asyncio.run(_detect())
    except (FatalExtractionError, DegradedSignalError, ValueError) as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from exc

    typer.echo(json.dumps(result, indent=2))


@features_app.command("transcribe")
def transcribe(
    video_path: str,
    config_path: Path = ConfigOption,
) -> None:
    """Transcribe the audio track and print speech statistics."""

    settings = _bootstrap(config_path)
    transcriber = build_transcriber(settings.transcription)
    scoring = settings.scoring

    temp_root = settings.pipeline.temp_root
    if temp_root is not None:
        temp_root.mkdir(parents=True, exist_ok=True)

    async def _transcribe() -> dict[str, object]:
        asset = await probe_video(video_path)
        with tempfile.TemporaryDirectory(prefix="viralfit-", dir=temp_root) as work_dir:
            features = await extract_audio_features(
                asset,
                Path(work_dir),
                transcriber,
                hook_window_seconds=hook_window(
                    asset.duration_seconds, scoring.hook_window_seconds, scoring.hook_window_ratio
                ),
                sample_rate=settings.transcription.sample_rate,
                timeout_seconds=settings.transcription.timeout_seconds,
            )
        return {"status": "ok", "video_path": str(asset.path), **asdict(features)}

    try:
        result = asyncio.run(_transcribe())
    except (ViralFitError, OSError) as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from exc

    typer.echo(json.dumps(result, indent=2, ensure_ascii=False, default=str))


def main() -> None:
    app()


if __name__ == "__main__":
    main()
