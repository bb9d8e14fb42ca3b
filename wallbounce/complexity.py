"""Prompt complexity scoring and synthesizer tier selection.

Three sub-scores, each capped at 3:

* structural: prompt length, list markers and question marks
* cognitive: causal, comparative and design language
* domain: how many subject areas the prompt spans

A total at or above the threshold (default 6) picks the complex synthesizer.
Everything here is a pure function of its inputs.
"""

import logging
import re
from collections.abc import Mapping

from wallbounce.models import BackendKind, ComplexityScore, TaskType

logger = logging.getLogger(__name__)

_SUB_SCORE_CAP = 3

_LIST_MARKER = re.compile(r"(?:^|\n)\s*[-*•]|\d+\.", re.MULTILINE)
_QUESTION_MARK = re.compile(r"[?？]")

_CAUSAL = re.compile(r"なぜ|\bwhy\b|理由|根拠|背景|\bbecause\b|\breason|\bcaus|どのように|\bhow\b|方法|手順|プロセス", re.IGNORECASE)
_COMPARISON = re.compile(r"比較|compare|comparison|評価|evaluat|トレードオフ|trade-?offs?|versus|\bvs\.?\b", re.IGNORECASE)
_DESIGN = re.compile(r"設計|design|アーキテクチャ|architecture|構造|structure", re.IGNORECASE)

_DOMAINS: dict[str, re.Pattern[str]] = {
    "technical": re.compile(r"コード|code|実装|implement|プログラム|program", re.IGNORECASE),
    "business": re.compile(r"ビジネス|business|戦略|strategy|\bROI\b|コスト|cost", re.IGNORECASE),
    "security": re.compile(r"セキュリティ|security|脆弱性|vulnerab|リスク|risk", re.IGNORECASE),
    "performance": re.compile(r"パフォーマンス|performance|最適化|optimi[sz]|スケール|\bscal", re.IGNORECASE),
    "operations": re.compile(r"運用|operation|監視|monitoring|保守|maintenance", re.IGNORECASE),
}


def score_structural(prompt: str) -> int:
    score = 0
    if len(prompt) > 800:
        score += 2
    elif len(prompt) > 400:
        score += 1

    list_count = len(_LIST_MARKER.findall(prompt))
    if list_count > 5:
        score += 2
    elif list_count > 2:
        score += 1

    question_count = len(_QUESTION_MARK.findall(prompt))
    if question_count > 4:
        score += 2
    elif question_count > 2:
        score += 1

    return min(score, _SUB_SCORE_CAP)


def score_cognitive(prompt: str) -> int:
    score = 0
    if _CAUSAL.search(prompt):
        score += 1
    if _COMPARISON.search(prompt):
        score += 2
    if _DESIGN.search(prompt):
        score += 1
    return min(score, _SUB_SCORE_CAP)


def matched_domains(prompt: str) -> list[str]:
    return [name for name, pattern in _DOMAINS.items() if pattern.search(prompt)]


def score_domain(prompt: str) -> int:
    count = len(matched_domains(prompt))
    if count >= 3:
        return 3
    if count == 2:
        return 2
    return 0


def score_complexity(prompt: str) -> ComplexityScore:
    return ComplexityScore(
        structural=score_structural(prompt),
        cognitive=score_cognitive(prompt),
        domain=score_domain(prompt),
    )


class SynthesizerSelector:
    """Picks the synthesis backend for a call."""

    def __init__(
        self,
        default: BackendKind,
        complex_: BackendKind,
        threshold: int = 6,
        task_overrides: Mapping[TaskType, BackendKind] | None = None,
    ) -> None:
        self.default = default
        self.complex = complex_
        self.threshold = threshold
        self._overrides = dict(task_overrides or {})

    def select(self, prompt: str, task_type: TaskType) -> tuple[BackendKind, ComplexityScore | None]:
        """Return (synthesizer, score). Score is None when an override short-circuits."""
        override = self._overrides.get(task_type)
        if override is not None:
            logger.info("Task type mapping: %s -> %s", task_type.value, override.value)
            return override, None
        if task_type is TaskType.CRITICAL:
            logger.info("Critical task without mapping -> %s", self.complex.value)
            return self.complex, None

        score = score_complexity(prompt)
        chosen = self.complex if score.total >= self.threshold else self.default
        logger.info(
            "Complexity %d (structural=%d cognitive=%d domain=%d) -> %s",
            score.total,
            score.structural,
            score.cognitive,
            score.domain,
            chosen.value,
        )
        return chosen, score

    def select_synthesizer(self, prompt: str, task_type: TaskType) -> BackendKind:
        return self.select(prompt, task_type)[0]
