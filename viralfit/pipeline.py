from __future__ import annotations

import asyncio
import logging
import shutil
import tempfile
from pathlib import Path
from time import perf_counter
from typing import Callable

from viralfit.config import PlatformRule, Settings
from viralfit.errors import DegradedSignalError, FatalExtractionError
from viralfit.features.asr import Transcriber, build_transcriber, extract_audio_features
from viralfit.features.emotion import DISABLED_NOTE, FaceEmotionClassifier, FaceModels, get_face_models
from viralfit.features.scenes import detect_scene_boundaries
from viralfit.ingest.frames import sample_frames
from viralfit.ingest.probe import probe_video
from viralfit.models import (
    AnalysisReport,
    AudioFeatures,
    Diagnostic,
    EmotionSummary,
    FrameSample,
    PacingScore,
    PipelineState,
    Platform,
    VideoAsset,
)
from viralfit.scoring.emotion import score_emotion
from viralfit.scoring.hook import hook_window, score_hook
from viralfit.scoring.pacing import analyze_pacing, score_pacing
from viralfit.scoring.platform_fit import FitInputs, best_platform, score_platform_fit
from viralfit.scoring.structure import score_structure
from viralfit.suggest.actions import ActionSuggester, SuggestionRequest, build_suggester, fallback_suggestions

logger = logging.getLogger(__name__)


class AnalysisPipeline:
    """Drives one video through sampling, scoring, fusion and suggestions.

    States advance ``init -> sampling -> scoring -> fusing -> suggesting -> done``.
    Only a fatal extraction error during sampling ends in ``failed``; every other
    stage failure degrades its signal and is recorded as a diagnostic. The per-run
    temp directory is removed on every exit path.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        transcriber: Transcriber | None = None,
        face_models: FaceModels | None = None,
        suggester: ActionSuggester | None = None,
        on_state: Callable[[PipelineState], None] | None = None,
    ) -> None:
        self.settings = settings or Settings()
        self.transcriber = transcriber or build_transcriber(self.settings.transcription)
        self.suggester = suggester or build_suggester(self.settings.llm)
        self._face_models = face_models
        self._on_state = on_state
        self.state = PipelineState.INIT
        self.state_history: list[PipelineState] = [PipelineState.INIT]

    @property
    def face_models(self) -> FaceModels:
        if self._face_models is None:
            vision = self.settings.vision
            if vision.enabled:
                self._face_models = get_face_models(vision.min_detection_confidence, vision.max_faces)
            else:
                self._face_models = FaceModels.disabled("vision disabled in configuration")
        return self._face_models

    async def run(
        self,
        video_path: str | Path,
        *,
        target_platform: Platform | None = None,
        target_language: str | None = None,
    ) -> AnalysisReport:
        """Analyze one video and return the full report; raises only ``FatalExtractionError``."""

        self.state = PipelineState.INIT
        self.state_history = [PipelineState.INIT]
        platform = target_platform or self.settings.pipeline.target_platform
        language = target_language or self.settings.pipeline.target_language
        diagnostics: list[Diagnostic] = []
        started_at = perf_counter()

        temp_root = self.settings.pipeline.temp_root
        if temp_root is not None:
            Path(temp_root).mkdir(parents=True, exist_ok=True)

        with tempfile.TemporaryDirectory(prefix="viralfit-", dir=temp_root) as run_dir_name:
            run_dir = Path(run_dir_name)
            try:
                self._transition(PipelineState.SAMPLING)
                asset = await probe_video(video_path)
                audio, boundaries = await self._sample_signals(asset, run_dir, diagnostics)
                frames = await sample_frames(
                    asset,
                    run_dir / "frames",
                    interval_seconds=self.settings.sampling.frame_interval_seconds,
                    jpeg_quality=self.settings.sampling.jpeg_quality,
                    timeout_seconds=self.settings.sampling.timeout_seconds,
                )
            except FatalExtractionError as exc:
                self._transition(PipelineState.FAILED)
                logger.error("Pipeline failed during sampling for %s: %s", video_path, exc)
                raise

            emotions = await self._classify_emotions(frames, run_dir / "frames")
            diagnostics.extend(_signal_diagnostics(audio, emotions, self.face_models))

            report = await self._score_and_report(
                asset=asset,
                audio=audio,
                boundaries=boundaries,
                emotions=emotions,
                platform=platform,
                language=language,
                diagnostics=diagnostics,
            )

        elapsed = perf_counter() - started_at
        logger.info("Analysis of %s done in %.1fs (%s degraded signals)", asset.path.name, elapsed, len(diagnostics))
        report.metadata["elapsed_seconds"] = round(elapsed, 3)
        return report

    async def _score_and_report(
        self,
        *,
        asset: VideoAsset,
        audio: AudioFeatures,
        boundaries: list[float],
        emotions: EmotionSummary,
        platform: Platform | None,
        language: str,
        diagnostics: list[Diagnostic],
    ) -> AnalysisReport:
        scoring = self.settings.scoring
        duration = asset.duration_seconds

        self._transition(PipelineState.SCORING)
        hook, pacing, emotion, structure = await asyncio.gather(
            asyncio.to_thread(
                score_hook,
                duration_seconds=duration,
                audio=audio,
                emotion_frames=emotions.frames,
                scene_boundaries=boundaries,
                window_max_seconds=scoring.hook_window_seconds,
                window_ratio=scoring.hook_window_ratio,
                fast_speech_wpm=scoring.fast_speech_wpm,
            ),
            asyncio.to_thread(_pacing_score, boundaries, duration, platform, scoring.platforms),
            asyncio.to_thread(score_emotion, emotions, scoring.emotion_weights),
            asyncio.to_thread(score_structure, duration, audio.transcript),
        )

        self._transition(PipelineState.FUSING)
        fit = score_platform_fit(
            FitInputs(
                duration_seconds=duration,
                hook=hook.score,
                pacing=pacing.score,
                emotion=emotion.score,
                has_cta=structure.has_cta,
            ),
            scoring.platforms,
        )
        top_platform = best_platform(fit)

        self._transition(PipelineState.SUGGESTING)
        suggestion_request = SuggestionRequest(
            transcript=audio.transcript.text,
            scores={
                "hook": hook.score,
                "pacing": pacing.score,
                "emotion": emotion.score,
                "structure": structure.score,
            },
            platform_fit=fit,
            best_platform=top_platform,
            hook=hook,
            language=language,
        )
        try:
            suggestions = await self.suggester.suggest(suggestion_request)
        except Exception as exc:
            logger.exception("Suggester %s raised; using fallback suggestions.", self.suggester.name)
            suggestions = fallback_suggestions(f"Suggestion stage failed: {exc}")
        if suggestions.source == "fallback":
            diagnostics.append(Diagnostic(stage="suggestions", message=suggestions.note or "fallback"))

        self._transition(PipelineState.DONE)
        return AnalysisReport(
            video_path=str(asset.path),
            duration_seconds=duration,
            hook=hook,
            pacing=pacing,
            emotion=emotion,
            structure=structure,
            platform_fit=fit,
            best_platform=top_platform,
            virality_score=fit[top_platform],
            transcript=audio.transcript.text,
            language=audio.transcript.language,
            audio=audio,
            emotions=emotions,
            scene_boundaries=tuple(boundaries),
            suggestions=suggestions,
            target_language=language,
            diagnostics=tuple(diagnostics),
            metadata={
                "states": [state.value for state in self.state_history],
                "transcriber": self.transcriber.name,
                "suggester": self.suggester.name,
                "target_platform": platform.value if platform else None,
            },
        )

    async def _sample_signals(
        self, asset: VideoAsset, run_dir: Path, diagnostics: list[Diagnostic]
    ) -> tuple[AudioFeatures, list[float]]:
        """Audio and scene detection run side by side; a failure in one cancels the other."""

        audio_task = asyncio.create_task(self._extract_audio(asset, run_dir))
        scenes_task = asyncio.create_task(self._detect_scenes(asset, diagnostics))
        try:
            audio, boundaries = await asyncio.gather(audio_task, scenes_task)
        except BaseException:
            for task in (audio_task, scenes_task):
                task.cancel()
            await asyncio.gather(audio_task, scenes_task, return_exceptions=True)
            raise
        return audio, boundaries

    async def _extract_audio(self, asset: VideoAsset, run_dir: Path) -> AudioFeatures:
        scoring = self.settings.scoring
        transcription = self.settings.transcription
        return await extract_audio_features(
            asset,
            run_dir,
            self.transcriber,
            hook_window_seconds=hook_window(
                asset.duration_seconds, scoring.hook_window_seconds, scoring.hook_window_ratio
            ),
            sample_rate=transcription.sample_rate,
            timeout_seconds=transcription.timeout_seconds,
        )

    async def _detect_scenes(self, asset: VideoAsset, diagnostics: list[Diagnostic]) -> list[float]:
        try:
            return await detect_scene_boundaries(
                asset,
                threshold=self.settings.scenes.threshold,
                timeout_seconds=self.settings.scenes.timeout_seconds,
            )
        except (DegradedSignalError, OSError, RuntimeError, ValueError, asyncio.TimeoutError) as exc:
            logger.warning("Scene detection degraded; treating video as a single long take: %s", exc)
            diagnostics.append(Diagnostic(stage="scenes", message=str(exc) or type(exc).__name__))
            return []

    async def _classify_emotions(self, frames: list[FrameSample], frames_dir: Path) -> EmotionSummary:
        vision = self.settings.vision
        classifier = FaceEmotionClassifier(
            self.face_models,
            frame_delay_seconds=vision.frame_delay_seconds,
            frame_timeout_seconds=vision.frame_timeout_seconds,
        )
        try:
            return await classifier.classify(frames)
        finally:
            shutil.rmtree(frames_dir, ignore_errors=True)

    def _transition(self, state: PipelineState) -> None:
        logger.debug("Pipeline state %s -> %s", self.state.value, state.value)
        self.state = state
        self.state_history.append(state)
        if self._on_state is not None:
            self._on_state(state)


def _pacing_score(
    boundaries: list[float],
    duration_seconds: float,
    platform: Platform | None,
    rules: dict[Platform, PlatformRule],
) -> PacingScore:
    return score_pacing(analyze_pacing(boundaries, duration_seconds), platform, rules)


def _signal_diagnostics(audio: AudioFeatures, emotions: EmotionSummary, face_models: FaceModels) -> list[Diagnostic]:
    diagnostics: list[Diagnostic] = []
    if audio.transcript.error:
        diagnostics.append(Diagnostic(stage="audio", message=audio.transcript.error))
    if audio.energy_error:
        diagnostics.append(Diagnostic(stage="audio_energy", message=audio.energy_error))
    if emotions.note == DISABLED_NOTE:
        diagnostics.append(
            Diagnostic(stage="faces", message=f"Emotion analysis disabled: {face_models.reason or 'unavailable'}")
        )
    failed_frames = sum(1 for frame in emotions.frames if frame.error)
    if failed_frames:
        diagnostics.append(
            Diagnostic(stage="faces", message=f"{failed_frames} of {emotions.frames_analyzed} frames could not be analyzed")
        )
    return diagnostics
