from __future__ import annotations

import json

import pytest

from viralfit.config import LLMSettings
from viralfit.models import HookScore, Platform
from viralfit.suggest import actions

VALID_RESPONSE = json.dumps(
    {
        "hookRewrite": "Stop! This camera trick changes everything.",
        "ctaRewrite": "Follow for the second trick.",
        "titleSuggestions": ["Camera hack", "Try this today", "Nobody shows you this", "One more", "Two more", "Extra"],
        "editingTips": ["Cut the pause at 0:04", "Add captions"],
        "description": "A quick camera trick.",
    }
)


def _request(language: str = "en") -> actions.SuggestionRequest:
    hook = HookScore(
        score=40,
        window_seconds=3.0,
        has_speech=True,
        has_face=False,
        has_fast_cuts=False,
        has_hook_keyword=False,
        high_energy_speech=False,
        dead_opening=False,
        matched_keyword=None,
        suggestion="Start with a stronger visual or verbal hook.",
    )
    return actions.SuggestionRequest(
        transcript="word " * 300,
        scores={"hook": 40, "pacing": 70, "emotion": 50, "structure": 70},
        platform_fit={Platform.TIKTOK: 80, Platform.YOUTUBE: 50},
        best_platform=Platform.TIKTOK,
        hook=hook,
        language=language,
    )


def test_validate_suggestions_accepts_exact_schema() -> None:
    result = actions.validate_suggestions(json.loads(VALID_RESPONSE))

    assert result.source == "llm"
    assert len(result.title_suggestions) == 5
    assert result.editing_tips == ("Cut the pause at 0:04", "Add captions")


@pytest.mark.parametrize(
    "mutation",
    [
        {"extra": "field"},
        {"titleSuggestions": ["only", "two"]},
        {"editingTips": ["one"]},
        {"hookRewrite": "   "},
        {"description": 42},
    ],
)
def test_validate_suggestions_rejects_schema_violations(mutation: dict[str, object]) -> None:
    payload = {**json.loads(VALID_RESPONSE), **mutation}

    with pytest.raises(ValueError):
        actions.validate_suggestions(payload)


def test_payload_truncates_transcript_and_uses_plain_values() -> None:
    payload = _request().to_payload()

    assert len(payload["transcript_excerpt"]) == actions.TRANSCRIPT_EXCERPT_CHARS
    assert payload["platform_fit"] == {"tiktok": 80, "youtube": 50}
    assert payload["best_platform"] == "tiktok"
    assert payload["hook_analysis"]["signals"]["speech"] is True


def test_format_prompt_injects_target_language() -> None:
    system_prompt, user_prompt = actions.format_prompt(_request(language="fr"))

    assert "fr" in system_prompt
    assert "{language}" not in system_prompt
    assert '"best_platform": "tiktok"' in user_prompt


@pytest.mark.asyncio
async def test_ollama_suggester_success(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(actions, "_request_ollama", lambda **_kwargs: VALID_RESPONSE)

    result = await actions.OllamaSuggester().suggest(_request())

    assert result.source == "llm"
    assert result.hook_rewrite.startswith("Stop!")


@pytest.mark.asyncio
async def test_ollama_suggester_retries_then_succeeds(monkeypatch: pytest.MonkeyPatch) -> None:
    responses = iter(['{"hookRewrite": "missing keys"}', VALID_RESPONSE])
    monkeypatch.setattr(actions, "_request_ollama", lambda **_kwargs: next(responses))

    result = await actions.OllamaSuggester(max_retries=1).suggest(_request())

    assert result.source == "llm"


@pytest.mark.asyncio
async def test_malformed_json_falls_back_to_static_suggestions(monkeypatch: pytest.MonkeyPatch) -> None:
    responses = iter(["not json", "still not json"])
    monkeypatch.setattr(actions, "_request_ollama", lambda **_kwargs: next(responses))

    result = await actions.OllamaSuggester(max_retries=1).suggest(_request())

    assert result.source == "fallback"
    assert result.hook_rewrite == "Could not generate."
    assert result.cta_rewrite == "Could not generate."
    assert result.editing_tips == ("Focus on better lighting", "Cut silence")


@pytest.mark.asyncio
async def test_unreachable_service_falls_back(monkeypatch: pytest.MonkeyPatch) -> None:
    def _refuse(**_kwargs: object) -> str:
        raise OSError("connection refused")

    monkeypatch.setattr(actions, "_request_ollama", _refuse)

    result = await actions.OllamaSuggester(max_retries=0).suggest(_request())

    assert result.source == "fallback"
    assert "unavailable" in (result.note or "")


def test_build_suggester_selects_strategy() -> None:
    assert isinstance(actions.build_suggester(LLMSettings(provider="fixture")), actions.FixtureSuggester)
    live = actions.build_suggester(LLMSettings(model="llama3", max_retries=2))

    assert isinstance(live, actions.OllamaSuggester)
    assert (live.model, live.max_retries) == ("llama3", 2)
