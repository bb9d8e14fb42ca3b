"""Exception hierarchy for the wall-bounce orchestrator."""


class WallBounceError(Exception):
    """Base class for every error raised by this package."""


class BackendError(WallBounceError):
    """Raised when a single backend call fails."""

    def __init__(self, backend_name: str, message: str) -> None:
        self.backend_name = backend_name
        self.message = message
        super().__init__(f"[{backend_name}] {message}")


class InsufficientBackends(WallBounceError):
    """Fewer successful backends than the effective quorum."""

    def __init__(
        self,
        required: int,
        received: int,
        errors: list[str],
        context: str = "",
        attempted: list[str] | None = None,
    ) -> None:
        self.required = required
        self.received = received
        self.errors = list(errors)
        self.attempted = list(attempted or [])
        detail = "; ".join(self.errors) if self.errors else "no backend responses"
        suffix = f" {context}" if context else ""
        super().__init__(
            f"Need at least {required} backends{suffix}, got {received}. {detail}"
        )


class SynthesisError(WallBounceError):
    """The consensus step itself failed. No substitute synthesizer is tried."""

    def __init__(
        self,
        synthesizer: str,
        message: str,
        errors: list[str] | None = None,
        attempted: list[str] | None = None,
        votes: list | None = None,
    ) -> None:
        self.synthesizer = synthesizer
        self.message = message
        self.errors = list(errors or [])
        self.attempted = list(attempted or [])
        self.votes = list(votes or [])
        super().__init__(f"Synthesis via {synthesizer} failed: {message}")


class ConfigurationError(WallBounceError):
    """Invalid setup detected before any backend is invoked."""
