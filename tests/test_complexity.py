"""Tests for wallbounce/complexity.py."""

import logging

from wallbounce.complexity import (
    SynthesizerSelector,
    matched_domains,
    score_cognitive,
    score_complexity,
    score_domain,
    score_structural,
)
from wallbounce.models import BackendKind, TaskType

_BULLETS = "\n".join(f"- point {i}" for i in range(6))


def _selector(overrides=None) -> SynthesizerSelector:
    return SynthesizerSelector(
        default=BackendKind.CLAUDE_SONNET_LATEST,
        complex_=BackendKind.CLAUDE_OPUS,
        threshold=6,
        task_overrides=overrides,
    )


def test_structural_short_prompt_scores_zero():
    assert score_structural("Why is the sky blue?") == 0


def test_structural_long_list_many_questions_capped():
    prompt = "x" * 900 + "\n" + _BULLETS + "\nA? B? C? D? E?"
    assert score_structural(prompt) == 3


def test_structural_medium_length():
    assert score_structural("y" * 500) == 1


def test_cognitive_components():
    assert score_cognitive("Why does it fail?") == 1
    assert score_cognitive("Compare Postgres and MySQL") == 2
    assert score_cognitive("Why compare them and how to design it") == 3


def test_cognitive_how_needs_word_boundary():
    assert score_cognitive("show me the list") == 0


def test_cognitive_japanese_terms():
    assert score_cognitive("なぜこの設計を比較するのか") == 3


def test_domain_scoring():
    assert score_domain("fix this code") == 0
    assert score_domain("code and security") == 2
    assert score_domain("code, security and performance at scale") == 3
    assert matched_domains("business strategy and monitoring") == ["business", "operations"]


def test_score_complexity_total():
    prompt = "Compare designs: why does security and performance of this code matter?"
    score = score_complexity(prompt)
    assert score.cognitive == 3
    assert score.domain == 3
    assert score.total >= 6


def test_low_complexity_selects_default():
    synth, score = _selector().select("What is a mutex?", TaskType.BASIC)
    assert synth is BackendKind.CLAUDE_SONNET_LATEST
    assert score is not None and score.total < 6


def test_high_complexity_selects_complex():
    prompt = "Compare the architecture: why do security, performance and cost trade-offs differ in this code?"
    synth, score = _selector().select(prompt, TaskType.PREMIUM)
    assert synth is BackendKind.CLAUDE_OPUS
    assert score is not None and score.total >= 6


def test_task_override_bypasses_scoring():
    selector = _selector({TaskType.CRITICAL: BackendKind.CLAUDE_OPUS})
    prompt = "x" * 1200 + "\n" + _BULLETS + "\nsecurity performance"
    synth, score = selector.select(prompt, TaskType.CRITICAL)
    assert synth is BackendKind.CLAUDE_OPUS
    assert score is None


def test_critical_without_override_uses_complex():
    synth, score = _selector().select("hello", TaskType.CRITICAL)
    assert synth is BackendKind.CLAUDE_OPUS
    assert score is None


def test_selection_is_deterministic():
    selector = _selector()
    prompt = "How should we design the cache layer for performance and cost?"
    assert selector.select(prompt, TaskType.BASIC) == selector.select(prompt, TaskType.BASIC)


def test_selection_logged(caplog):
    with caplog.at_level(logging.INFO, logger="wallbounce.complexity"):
        _selector().select_synthesizer("What is a mutex?", TaskType.BASIC)
    assert "claude-sonnet-latest" in caplog.text
