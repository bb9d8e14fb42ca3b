"""Abstract base for all backend invokers, plus shared cost helpers."""

from abc import ABC, abstractmethod
from collections.abc import Mapping
from decimal import Decimal

from config.config_loader import BackendConfig
from wallbounce.errors import BackendError
from wallbounce.models import BackendResponse, TokenUsage

__all__ = ["Backend", "BackendError", "compute_cost", "estimate_tokens"]

_PER_MILLION = Decimal(1_000_000)


def compute_cost(config: BackendConfig, tokens: TokenUsage) -> Decimal:
    """Price a call from the configured per-million-token rates."""
    return (
        config.input_cost_per_mtok * tokens.input
        + config.output_cost_per_mtok * tokens.output
    ) / _PER_MILLION


def estimate_tokens(text: str) -> int:
    """Rough count for transports that report no usage (about 4 chars per token)."""
    return -(-len(text) // 4)


class Backend(ABC):
    """Abstract base for everything that can answer a prompt."""

    @abstractmethod
    def name(self) -> str:
        """Return the backend key (e.g. 'gemini-pro')."""
        ...

    @abstractmethod
    def model_string(self) -> str:
        """Return the actual model identifier string."""
        ...

    @abstractmethod
    async def invoke(self, prompt: str, options: Mapping[str, object] | None = None) -> BackendResponse:
        """Answer the prompt.

        Args:
            prompt: The full prompt text to send.
            options: Free-form call context such as mode and chain step.

        Returns:
            BackendResponse with content, confidence, cost and token usage.

        Raises:
            BackendError: On transport failure, timeout, or an empty answer.
        """
        ...

    def _response(self, config: BackendConfig, content: str, tokens: TokenUsage) -> BackendResponse:
        return BackendResponse(
            content=content,
            confidence=config.confidence,
            reasoning=f"{config.display_name} analysis via {config.sdk}",
            cost=compute_cost(config, tokens),
            tokens=tokens,
        )
