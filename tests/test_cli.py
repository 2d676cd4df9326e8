from __future__ import annotations

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

import viralfit.cli as cli
import viralfit.features.asr as asr
import viralfit.pipeline as pipeline_module
from viralfit.config import Settings
from viralfit.errors import FatalExtractionError
from viralfit.models import FrameSample, PipelineState, VideoAsset


def _offline_settings(tmp_path: Path) -> Settings:
    settings = Settings()
    settings.pipeline.temp_root = tmp_path / "runs"
    settings.transcription.provider = "fixture"
    settings.llm.provider = "fixture"
    settings.vision.enabled = False
    return settings


def _patch_media(monkeypatch: pytest.MonkeyPatch, duration: float = 30.0) -> None:
    async def _probe(path: str | Path, timeout_seconds: float = 60) -> VideoAsset:
        return VideoAsset(path=Path(path), duration_seconds=duration)

    async def _extract(
        asset: VideoAsset, work_dir: Path, target_sample_rate: int = 16000, timeout_seconds: float = 300
    ) -> Path:
        audio_path = work_dir / "audio.wav"
        audio_path.write_bytes(b"")
        return audio_path

    async def _scenes(asset: VideoAsset, threshold: float = 0.3, timeout_seconds: float = 300) -> list[float]:
        return [2.5, 5.0, 7.5]

    async def _frames(asset: VideoAsset, output_dir: Path, **_kwargs: object) -> list[FrameSample]:
        output_dir.mkdir(parents=True, exist_ok=True)
        return [FrameSample(timestamp_seconds=0.0, image_path=output_dir / "frame-00001.jpg")]

    monkeypatch.setattr(pipeline_module, "probe_video", _probe)
    monkeypatch.setattr(pipeline_module, "detect_scene_boundaries", _scenes)
    monkeypatch.setattr(pipeline_module, "sample_frames", _frames)
    monkeypatch.setattr(cli, "probe_video", _probe)
    monkeypatch.setattr(cli, "detect_scene_boundaries", _scenes)
    monkeypatch.setattr(asr, "extract_audio", _extract)


def test_config_show_prints_resolved_settings(tmp_path: Path) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text("scenes:\n  threshold: 0.4\n", encoding="utf-8")

    result = CliRunner().invoke(cli.app, ["config", "show", "--config", str(config_path)])

    assert result.exit_code == 0
    assert '"threshold": 0.4' in result.output


def test_run_command_prints_clean_error_without_traceback(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    video_path = tmp_path / "sample.mp4"
    video_path.write_bytes(b"data")

    class _FailingPipeline:
        def __init__(self, settings: Settings, *, on_state) -> None:
            self.on_state = on_state

        async def run(self, video_path: str, **_kwargs: object) -> None:
            self.on_state(PipelineState.SAMPLING)
            self.on_state(PipelineState.FAILED)
            raise FatalExtractionError("ffprobe is installed but failed to start because required shared libraries are missing")

    monkeypatch.setattr(cli, "_bootstrap", lambda _: _offline_settings(tmp_path))
    monkeypatch.setattr(cli, "AnalysisPipeline", _FailingPipeline)

    result = CliRunner().invoke(cli.app, ["run", str(video_path)])

    assert result.exit_code == 1
    assert "[1/4] Sample video, audio and scenes..." in result.output
    assert "Analyze video failed" in result.output
    assert "Error: ffprobe is installed but failed to start" in result.output
    assert "Traceback" not in result.output


def test_run_command_shows_progress_and_writes_report(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    video_path = tmp_path / "sample.mp4"
    video_path.write_bytes(b"data")
    output_path = tmp_path / "out" / "report.json"
    monkeypatch.setattr(cli, "_bootstrap", lambda _: _offline_settings(tmp_path))
    _patch_media(monkeypatch)

    result = CliRunner().invoke(
        cli.app,
        ["run", str(video_path), "--platform", "youtube", "--language", "fr", "--output", str(output_path)],
    )

    assert result.exit_code == 0
    assert "[1/4] Sample video, audio and scenes..." in result.output
    assert "[4/4] Request suggestions..." in result.output
    assert '"status": "ok"' in result.output

    report = json.loads(output_path.read_text(encoding="utf-8"))
    assert report["target_language"] == "fr"
    assert report["pacing"]["platform"] == "youtube"
    assert report["suggestions"]["source"] == "fixture"
    assert set(report["platform_fit"]) == {"tiktok", "reels", "shorts", "youtube"}


def test_features_scenes_prints_boundaries(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    video_path = tmp_path / "sample.mp4"
    video_path.write_bytes(b"data")
    monkeypatch.setattr(cli, "_bootstrap", lambda _: _offline_settings(tmp_path))
    _patch_media(monkeypatch)

    result = CliRunner().invoke(cli.app, ["features", "scenes", str(video_path)])

    assert result.exit_code == 0
    assert '"scene_boundaries": [' in result.output
    assert "7.5" in result.output


def test_features_scenes_reports_fatal_probe_error(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    async def _missing(path: str | Path, timeout_seconds: float = 60) -> VideoAsset:
        raise FatalExtractionError(f"Video file not found: {path}")

    monkeypatch.setattr(cli, "_bootstrap", lambda _: _offline_settings(tmp_path))
    monkeypatch.setattr(cli, "probe_video", _missing)

    result = CliRunner().invoke(cli.app, ["features", "scenes", str(tmp_path / "missing.mp4")])

    assert result.exit_code == 1
    assert "Error: Video file not found" in result.output


def test_features_transcribe_uses_configured_provider(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    video_path = tmp_path / "sample.mp4"
    video_path.write_bytes(b"data")
    settings = _offline_settings(tmp_path)
    settings.pipeline.temp_root = None
    monkeypatch.setattr(cli, "_bootstrap", lambda _: settings)
    _patch_media(monkeypatch)

    result = CliRunner().invoke(cli.app, ["features", "transcribe", str(video_path)])

    assert result.exit_code == 0
    assert "mock transcript" in result.output
    assert '"words_per_minute"' in result.output


def test_run_command_reports_os_error_cleanly(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    video_path = tmp_path / "sample.mp4"
    video_path.write_bytes(b"data")

    class _DeniedPipeline:
        def __init__(self, settings: Settings, *, on_state) -> None:
            self.on_state = on_state

        async def run(self, video_path: str, **_kwargs: object) -> None:
            raise PermissionError(f"Permission denied: '{video_path}'")

    monkeypatch.setattr(cli, "_bootstrap", lambda _: _offline_settings(tmp_path))
    monkeypatch.setattr(cli, "AnalysisPipeline", _DeniedPipeline)

    result = CliRunner().invoke(cli.app, ["run", str(video_path)])

    assert result.exit_code == 1
    assert "Error: Permission denied" in result.output
    assert "Traceback" not in result.output
