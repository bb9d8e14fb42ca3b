"""Final synthesis: build the merge prompt and call the synthesizer once."""

import logging
from collections.abc import Sequence

from config.config_loader import PromptsConfig
from wallbounce.errors import BackendError, SynthesisError
from wallbounce.models import BackendResponse, TaskType, Vote
from wallbounce.prompts import build_synthesis_prompt
from wallbounce.registry import BackendDescriptor

logger = logging.getLogger(__name__)


class ConsensusBuilder:
    """Merges primary votes into one answer via a single synthesizer call."""

    def __init__(self, prompts: PromptsConfig) -> None:
        self._prompts = prompts

    def build_prompt(
        self,
        prompt: str,
        votes: Sequence[Vote],
        task_type: TaskType | None = None,
        depth: int | None = None,
    ) -> str:
        return build_synthesis_prompt(prompt, votes, self._prompts, task_type=task_type, depth=depth)

    async def synthesize(
        self,
        synthesizer: BackendDescriptor,
        synthesis_prompt: str,
    ) -> BackendResponse:
        """Invoke the synthesizer exactly once.

        Raises:
            SynthesisError: If the call fails or returns empty content.
        """
        logger.info("Running synthesis via %s", synthesizer.key.value)
        try:
            response = await synthesizer.invoke(synthesis_prompt, {"mode": "synthesis"})
        except BackendError as exc:
            raise SynthesisError(synthesizer.key.value, exc.message) from exc
        except Exception as exc:
            raise SynthesisError(synthesizer.key.value, f"Unexpected error: {exc}") from exc

        if not response.content.strip():
            raise SynthesisError(synthesizer.key.value, "returned empty content")
        return response
