from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol
from urllib import request
from urllib.error import HTTPError, URLError

from viralfit.config import LLMSettings
from viralfit.models import ActionSuggestions, HookScore, Platform

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "qwen2.5:7b-instruct-q4_K_M"
DEFAULT_ENDPOINT = "http://localhost:11434"
DEFAULT_TIMEOUT_SECONDS = 45
DEFAULT_MAX_RETRIES = 1
PROMPT_TEMPLATE_PATH = Path("prompts/suggest_prompt.txt")
TRANSCRIPT_EXCERPT_CHARS = 500
MIN_TITLES = 3
MAX_TITLES = 5
MIN_TIPS = 2
EXPECTED_KEYS = {"hookRewrite", "ctaRewrite", "titleSuggestions", "editingTips", "description"}

DEFAULT_SYSTEM_PROMPT = """You are an expert video editor and viral content strategist.
Analyze the provided video data and generate specific, actionable improvements.
Respond with a single JSON object with exactly these keys:
{"hookRewrite": "...", "ctaRewrite": "...", "titleSuggestions": ["...", "...", "..."],
 "editingTips": ["...", "..."], "description": "..."}
Give 3 to 5 title suggestions and at least 2 editing tips.
Write every value in the language: {language}."""


@dataclass(slots=True)
class SuggestionRequest:
    """Compact feature summary sent to the generative service."""

    transcript: str
    scores: dict[str, int]
    platform_fit: dict[Platform, int]
    best_platform: Platform
    hook: HookScore
    language: str = "en"

    def to_payload(self) -> dict[str, Any]:
        return {
            "transcript_excerpt": self.transcript[:TRANSCRIPT_EXCERPT_CHARS],
            "scores": self.scores,
            "platform_fit": {platform.value: score for platform, score in self.platform_fit.items()},
            "best_platform": self.best_platform.value,
            "hook_analysis": {
                "score": self.hook.score,
                "window_seconds": self.hook.window_seconds,
                "signals": self.hook.signals,
                "dead_opening": self.hook.dead_opening,
            },
            "language": self.language,
        }


class ActionSuggester(Protocol):
    name: str

    async def suggest(self, suggestion_request: SuggestionRequest) -> ActionSuggestions: ...


def fallback_suggestions(note: str) -> ActionSuggestions:
    """Static generic advice returned whenever the generative service cannot be used."""

    return ActionSuggestions(
        hook_rewrite="Could not generate.",
        cta_rewrite="Could not generate.",
        title_suggestions=(),
        editing_tips=("Focus on better lighting", "Cut silence"),
        description="",
        source="fallback",
        note=note,
    )


class FixtureSuggester:
    """Canned suggestions for offline runs without a generative service."""

    name = "fixture"

    async def suggest(self, suggestion_request: SuggestionRequest) -> ActionSuggestions:
        return ActionSuggestions(
            hook_rewrite="Stop scrolling and watch this!",
            cta_rewrite="Follow for part two.",
            title_suggestions=(
                "You won't believe how this ends",
                "The one trick nobody talks about",
                "Watch this before you post again",
            ),
            editing_tips=("Cut the silence between sentences", "Open on the payoff shot"),
            description="A short breakdown of what makes this clip work.",
            source="fixture",
        )


class OllamaSuggester:
    """Requests suggestions from a local Ollama model with strict JSON validation."""

    name = "ollama"

    def __init__(
        self,
        *,
        endpoint: str = DEFAULT_ENDPOINT,
        model: str = DEFAULT_MODEL,
        timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS,
        max_retries: int = DEFAULT_MAX_RETRIES,
    ) -> None:
        self.endpoint = endpoint
        self.model = model
        self.timeout_seconds = timeout_seconds
        self.max_retries = max_retries

    async def suggest(self, suggestion_request: SuggestionRequest) -> ActionSuggestions:
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self._suggest_blocking, suggestion_request),
                timeout=self.timeout_seconds * (max(0, self.max_retries) + 1) + 1,
            )
        except asyncio.TimeoutError:
            logger.warning("Suggestion request timed out; using fallback suggestions.")
            return fallback_suggestions("Suggestion service timed out; used deterministic fallback.")

    def _suggest_blocking(self, suggestion_request: SuggestionRequest) -> ActionSuggestions:
        system_prompt, user_prompt = format_prompt(suggestion_request)
        last_error: Exception | None = None

        for _ in range(max(0, self.max_retries) + 1):
            try:
                response_text = _request_ollama(
                    endpoint=self.endpoint,
                    model=self.model,
                    system=system_prompt,
                    prompt=user_prompt,
                    timeout_seconds=self.timeout_seconds,
                )
                return validate_suggestions(json.loads(response_text))
            except (json.JSONDecodeError, ValueError, HTTPError, URLError, TimeoutError, OSError, KeyError, TypeError) as exc:
                last_error = exc
                continue

        logger.warning("Suggestion service unusable (%s); using fallback suggestions.", last_error)
        return fallback_suggestions("Suggestion service unavailable; used deterministic fallback.")


def build_suggester(settings: LLMSettings) -> ActionSuggester:
    if settings.provider == "fixture":
        return FixtureSuggester()
    return OllamaSuggester(
        endpoint=settings.endpoint,
        model=settings.model,
        timeout_seconds=settings.timeout_seconds,
        max_retries=settings.max_retries,
    )


def format_prompt(suggestion_request: SuggestionRequest) -> tuple[str, str]:
    template = (
        PROMPT_TEMPLATE_PATH.read_text(encoding="utf-8").strip()
        if PROMPT_TEMPLATE_PATH.exists()
        else DEFAULT_SYSTEM_PROMPT
    )
    system_prompt = template.replace("{language}", suggestion_request.language)
    summary_json = json.dumps(suggestion_request.to_payload(), ensure_ascii=False, indent=2, sort_keys=True)
    return system_prompt, f"Video analysis JSON:\n{summary_json}\n"


def validate_suggestions(payload: Any) -> ActionSuggestions:
    if not isinstance(payload, dict):
        raise ValueError("Suggestion output must be a JSON object.")

    payload_keys = set(payload.keys())
    if payload_keys != EXPECTED_KEYS:
        raise ValueError(f"Suggestion output keys mismatch. Expected exactly {sorted(EXPECTED_KEYS)}.")

    hook_rewrite = _require_text(payload["hookRewrite"], "hookRewrite")
    cta_rewrite = _require_text(payload["ctaRewrite"], "ctaRewrite")
    description = _require_text(payload["description"], "description")
    titles = _require_text_list(payload["titleSuggestions"], "titleSuggestions")
    tips = _require_text_list(payload["editingTips"], "editingTips")

    if len(titles) < MIN_TITLES:
        raise ValueError(f"titleSuggestions must contain at least {MIN_TITLES} entries.")
    if len(tips) < MIN_TIPS:
        raise ValueError(f"editingTips must contain at least {MIN_TIPS} entries.")

    return ActionSuggestions(
        hook_rewrite=hook_rewrite,
        cta_rewrite=cta_rewrite,
        title_suggestions=tuple(titles[:MAX_TITLES]),
        editing_tips=tuple(tips),
        description=description,
        source="llm",
    )


def _require_text(value: Any, field_name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{field_name} must be a non-empty string.")
    return value.strip()


def _require_text_list(value: Any, field_name: str) -> list[str]:
    if not isinstance(value, list):
        raise ValueError(f"{field_name} must be a list of strings.")
    return [_require_text(item, field_name) for item in value]


def _request_ollama(*, endpoint: str, model: str, system: str, prompt: str, timeout_seconds: int) -> str:
    body = json.dumps(
        {
            "model": model,
            "system": system,
            "prompt": prompt,
            "stream": False,
            "format": "json",
        }
    ).encode("utf-8")

    req = request.Request(
        f"{endpoint.rstrip('/')}/api/generate",
        data=body,
        method="POST",
        headers={"Content-Type": "application/json"},
    )

    with request.urlopen(req, timeout=timeout_seconds) as response:
        payload = json.loads(response.read().decode("utf-8"))

    content = payload.get("response")
    if not isinstance(content, str):
        raise ValueError("Ollama response missing JSON text in 'response' field.")
    return content
