"""Merge votes, cost, timing and diagnostics into the returned result."""

from collections.abc import Sequence
from decimal import Decimal

from wallbounce.ledger import DispatchLedger
from wallbounce.models import (
    AnalysisDebug,
    AnalysisResult,
    BackendKind,
    BackendResponse,
    ComplexityScore,
    Consensus,
    ExecutionMode,
    TaskType,
    Vote,
)


def total_cost(votes: Sequence[Vote], synthesis: BackendResponse) -> Decimal:
    return sum((vote.response.cost for vote in votes), synthesis.cost)


def backends_used(votes: Sequence[Vote], synthesizer: BackendKind) -> list[str]:
    """Primary keys in vote order (chained repeats collapsed), then the synthesizer."""
    seen: list[str] = []
    for vote in votes:
        if vote.backend.value not in seen:
            seen.append(vote.backend.value)
    return [*seen, synthesizer.value]


def assemble_result(
    ledger: DispatchLedger,
    synthesis: BackendResponse,
    synthesizer: BackendKind,
    processing_time_ms: int,
    task_type: TaskType,
    mode: ExecutionMode,
    is_simple: bool = False,
    complexity: ComplexityScore | None = None,
    synthesis_prompt: str = "",
) -> AnalysisResult:
    votes = list(ledger.votes)
    return AnalysisResult(
        consensus=Consensus(
            content=synthesis.content,
            confidence=synthesis.confidence,
            reasoning=synthesis.reasoning,
        ),
        votes=votes,
        total_cost=total_cost(votes, synthesis),
        processing_time_ms=processing_time_ms,
        debug=AnalysisDebug(
            verified=len(votes) >= 2,
            backends_used=backends_used(votes, synthesizer),
            errors=list(ledger.errors),
            synthesizer=synthesizer.value,
            task_type=task_type,
            mode=mode,
            depth_executed=ledger.depth_executed,
            fallback_used=ledger.fallback_used,
            fallback_backends=[k.value for k in ledger.fallback_backends],
            is_simple=is_simple,
            complexity=complexity,
            steps=list(ledger.steps),
            synthesis_prompt=synthesis_prompt,
        ),
    )
