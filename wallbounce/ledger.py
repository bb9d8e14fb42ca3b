"""Per-call, append-only record of backend outcomes."""

from dataclasses import dataclass, field

from wallbounce.errors import BackendError
from wallbounce.models import BackendKind, BackendResponse, StepRecord, Vote
from wallbounce.registry import BackendDescriptor


@dataclass
class DispatchLedger:
    """Votes, errors and step records for one call. Never shared across calls."""

    votes: list[Vote] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    steps: list[StepRecord] = field(default_factory=list)
    attempted: list[BackendKind] = field(default_factory=list)
    fallback_backends: list[BackendKind] = field(default_factory=list)
    depth_executed: int | None = None

    @property
    def fallback_used(self) -> bool:
        return bool(self.fallback_backends)

    def record_success(
        self,
        descriptor: BackendDescriptor,
        prompt: str,
        response: BackendResponse,
        step: int,
        elapsed_ms: int,
        accumulated_context: str | None = None,
        fallback: bool = False,
    ) -> Vote:
        vote = Vote(
            backend=descriptor.key,
            display_name=descriptor.display_name,
            model=descriptor.model,
            response=response,
            agreement_score=response.confidence,
            step=step,
        )
        self.votes.append(vote)
        self.attempted.append(descriptor.key)
        if fallback:
            self.fallback_backends.append(descriptor.key)
        self.steps.append(
            StepRecord(
                step=step,
                backend=descriptor.key,
                input_prompt=prompt,
                output=response.content,
                confidence=response.confidence,
                processing_time_ms=elapsed_ms,
                accumulated_context=accumulated_context,
            )
        )
        return vote

    def record_failure(
        self,
        descriptor: BackendDescriptor,
        prompt: str,
        error: BackendError,
        step: int,
        elapsed_ms: int,
        accumulated_context: str | None = None,
    ) -> str:
        message = f"{descriptor.key.value}: {error.message}"
        self.errors.append(message)
        self.attempted.append(descriptor.key)
        self.steps.append(
            StepRecord(
                step=step,
                backend=descriptor.key,
                input_prompt=prompt,
                output="",
                confidence=0.0,
                processing_time_ms=elapsed_ms,
                accumulated_context=accumulated_context,
                error=error.message,
            )
        )
        return message
