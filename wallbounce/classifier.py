"""Query classification and the simple-query fast path."""

import logging
import re
from collections.abc import Sequence

from wallbounce.models import Classification, TaskType

logger = logging.getLogger(__name__)

_MIN_SIMPLE_LENGTH = 3


def _keyword_pattern(keyword: str) -> re.Pattern[str]:
    # ASCII words need boundaries ("log" must not hit "blog"); CJK terms have none
    escaped = re.escape(keyword)
    if keyword.isascii():
        return re.compile(rf"\b{escaped}\b", re.IGNORECASE)
    return re.compile(escaped)


class QueryClassifier:
    """Decides task type and whether a prompt qualifies for the lightweight roster."""

    def __init__(
        self,
        technical_keywords: Sequence[str],
        simple_patterns: Sequence[str],
        max_simple_length: int = 60,
        enabled: bool = True,
    ) -> None:
        self._blacklist = [_keyword_pattern(k) for k in technical_keywords if k]
        self._allow = [re.compile(p, re.IGNORECASE) for p in simple_patterns]
        self._max_length = max_simple_length
        self._enabled = enabled

    def is_simple(self, prompt: object) -> bool:
        if not self._enabled or not isinstance(prompt, str):
            return False
        text = prompt.strip()
        if len(text) < _MIN_SIMPLE_LENGTH or len(text) > self._max_length:
            return False
        if any(p.search(text) for p in self._blacklist):
            return False
        return any(p.match(text) for p in self._allow)

    def classify(self, prompt: object, requested: TaskType | None = None) -> Classification:
        """Classify a prompt. Never raises; ambiguous input is basic and non-simple."""
        task_type = requested if isinstance(requested, TaskType) else TaskType.BASIC
        simple = task_type is TaskType.SIMPLE or self.is_simple(prompt)
        if simple:
            logger.info("Simple query detected, using lightweight roster")
        return Classification(task_type=task_type, is_simple=simple)
