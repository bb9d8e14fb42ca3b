"""Tests for wallbounce/backends. SDK clients are mocked; no network."""

import sys
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from config.config_loader import BackendConfig
from wallbounce.backends.anthropic import AnthropicBackend
from wallbounce.backends.base import compute_cost, estimate_tokens
from wallbounce.backends.cli_backend import CliBackend, _extract_content
from wallbounce.backends.gemini import GeminiBackend
from wallbounce.backends.openai_provider import OpenAIBackend
from wallbounce.errors import BackendError
from wallbounce.models import BackendKind, TokenUsage


def _config(kind: BackendKind, sdk: str, **overrides) -> BackendConfig:
    values = dict(
        kind=kind,
        sdk=sdk,
        display_name=kind.value,
        model=f"{kind.value}-model",
        max_tokens=512,
        confidence=0.85,
        api_key_env="TEST_BACKEND_KEY",
        input_cost_per_mtok=Decimal("3"),
        output_cost_per_mtok=Decimal("15"),
    )
    values.update(overrides)
    return BackendConfig(**values)


@pytest.fixture
def api_key(monkeypatch):
    monkeypatch.setenv("TEST_BACKEND_KEY", "test-key")


# --- shared helpers ---------------------------------------------------------


def test_compute_cost_per_million_tokens():
    config = _config(BackendKind.CLAUDE_SONNET, "anthropic")
    cost = compute_cost(config, TokenUsage(input=1000, output=2000))
    assert cost == Decimal("0.033")


def test_compute_cost_free_backend():
    config = _config(BackendKind.GPT_CODEX, "cli", input_cost_per_mtok=Decimal("0"), output_cost_per_mtok=Decimal("0"))
    assert compute_cost(config, TokenUsage(input=500, output=500)) == Decimal("0")


def test_estimate_tokens_rounds_up():
    assert estimate_tokens("") == 0
    assert estimate_tokens("abcd") == 1
    assert estimate_tokens("abcde") == 2


def test_missing_api_key_raises(monkeypatch):
    monkeypatch.delenv("TEST_BACKEND_KEY", raising=False)
    with pytest.raises(BackendError, match="Missing API key"):
        AnthropicBackend(_config(BackendKind.CLAUDE_SONNET, "anthropic"))


# --- anthropic --------------------------------------------------------------


async def test_anthropic_invoke(api_key):
    backend = AnthropicBackend(_config(BackendKind.CLAUDE_SONNET, "anthropic"))
    backend._client = MagicMock()
    backend._client.messages.create = AsyncMock(
        return_value=SimpleNamespace(
            content=[SimpleNamespace(type="text", text="Use a queue.")],
            usage=SimpleNamespace(input_tokens=100, output_tokens=50),
        )
    )

    response = await backend.invoke("How do I decouple services?")

    assert response.content == "Use a queue."
    assert response.confidence == 0.85
    assert response.tokens == TokenUsage(input=100, output=50)
    assert response.cost == Decimal("0.00105")
    kwargs = backend._client.messages.create.await_args.kwargs
    assert kwargs["model"] == "claude-sonnet-model"
    assert kwargs["messages"] == [{"role": "user", "content": "How do I decouple services?"}]


async def test_anthropic_sdk_error_wrapped(api_key):
    backend = AnthropicBackend(_config(BackendKind.CLAUDE_SONNET, "anthropic"))
    backend._client = MagicMock()
    backend._client.messages.create = AsyncMock(side_effect=RuntimeError("529 overloaded"))

    with pytest.raises(BackendError, match="529 overloaded") as exc_info:
        await backend.invoke("Q")
    assert isinstance(exc_info.value.__cause__, RuntimeError)


async def test_anthropic_no_text_blocks(api_key):
    backend = AnthropicBackend(_config(BackendKind.CLAUDE_SONNET, "anthropic"))
    backend._client = MagicMock()
    backend._client.messages.create = AsyncMock(
        return_value=SimpleNamespace(content=[SimpleNamespace(type="tool_use")], usage=None)
    )
    with pytest.raises(BackendError, match="No text blocks"):
        await backend.invoke("Q")


# --- openai -----------------------------------------------------------------


async def test_openai_invoke(api_key):
    backend = OpenAIBackend(_config(BackendKind.GPT, "openai"))
    backend._client = MagicMock()
    backend._client.chat.completions.create = AsyncMock(
        return_value=SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content="Shard by tenant."))],
            usage=SimpleNamespace(prompt_tokens=40, completion_tokens=10),
        )
    )

    response = await backend.invoke("How to scale writes?")

    assert response.content == "Shard by tenant."
    assert response.tokens.total == 50
    kwargs = backend._client.chat.completions.create.await_args.kwargs
    assert kwargs["max_completion_tokens"] == 512


async def test_openai_empty_choice(api_key):
    backend = OpenAIBackend(_config(BackendKind.GPT, "openai"))
    backend._client = MagicMock()
    backend._client.chat.completions.create = AsyncMock(return_value=SimpleNamespace(choices=[], usage=None))
    with pytest.raises(BackendError, match="Empty response"):
        await backend.invoke("Q")


async def test_openai_timeout(api_key):
    import asyncio

    backend = OpenAIBackend(_config(BackendKind.GPT, "openai", timeout_sec=0.05))

    async def hang(*args, **kwargs):
        await asyncio.sleep(9999)

    backend._client = MagicMock()
    backend._client.chat.completions.create = AsyncMock(side_effect=hang)
    with pytest.raises(BackendError, match="timed out"):
        await backend.invoke("Q")


def test_openai_compatible_base_url(api_key):
    backend = OpenAIBackend(_config(BackendKind.GPT, "openai", base_url="https://api.x.ai/v1"))
    assert str(backend._client.base_url).startswith("https://api.x.ai/v1")


# --- gemini -----------------------------------------------------------------


async def test_gemini_invoke(api_key):
    backend = GeminiBackend(_config(BackendKind.GEMINI_PRO, "gemini"))
    backend._client = MagicMock()
    backend._client.aio.models.generate_content = AsyncMock(
        return_value=SimpleNamespace(
            text="Prefer event sourcing here.",
            usage_metadata=SimpleNamespace(prompt_token_count=30, candidates_token_count=None),
        )
    )

    response = await backend.invoke("Q")

    assert response.content == "Prefer event sourcing here."
    assert response.tokens == TokenUsage(input=30, output=0)
    assert response.reasoning == "gemini-pro analysis via gemini"


async def test_gemini_empty_text(api_key):
    backend = GeminiBackend(_config(BackendKind.GEMINI_PRO, "gemini"))
    backend._client = MagicMock()
    backend._client.aio.models.generate_content = AsyncMock(
        return_value=SimpleNamespace(text="", usage_metadata=None)
    )
    with pytest.raises(BackendError, match="Empty response text"):
        await backend.invoke("Q")


# --- cli --------------------------------------------------------------------


def _cli_config(command: list[str], **overrides) -> BackendConfig:
    return _config(BackendKind.GPT_CODEX, "cli", api_key_env=None, command=command, **overrides)


def test_extract_content_prefers_json_fields():
    assert _extract_content('{"response": " hi "}') == "hi"
    assert _extract_content('{"other": 1}') == '{"other": 1}'
    assert _extract_content("{not json") == "{not json"
    assert _extract_content("  plain  \n") == "plain"


def test_cli_requires_command():
    with pytest.raises(BackendError, match="requires a command"):
        CliBackend(_cli_config([]))


def test_cli_argv_substitutes_placeholder():
    backend = CliBackend(_cli_config(["codex", "exec", "{prompt}", "--json"]))
    assert backend._argv("Q") == ["codex", "exec", "Q", "--json"]
    assert CliBackend(_cli_config(["gemini", "-p"]))._argv("Q") == ["gemini", "-p", "Q"]


async def test_cli_invoke_reads_stdout():
    script = "import sys; print('echo: ' + sys.argv[1])"
    backend = CliBackend(_cli_config([sys.executable, "-c", script, "{prompt}"]))

    response = await backend.invoke("ping")

    assert response.content == "echo: ping"
    assert response.tokens.input == 1
    assert response.tokens.output == estimate_tokens("echo: ping")


async def test_cli_invoke_parses_json():
    script = "import json; print(json.dumps({'content': 'from json'}))"
    backend = CliBackend(_cli_config([sys.executable, "-c", script]))
    response = await backend.invoke("ignored")
    assert response.content == "from json"


async def test_cli_nonzero_exit_raises():
    script = "import sys; sys.stderr.write('quota exceeded'); sys.exit(3)"
    backend = CliBackend(_cli_config([sys.executable, "-c", script]))
    with pytest.raises(BackendError, match="code 3: quota exceeded"):
        await backend.invoke("Q")


async def test_cli_missing_binary_raises():
    backend = CliBackend(_cli_config(["definitely-not-a-real-binary-xyz"]))
    with pytest.raises(BackendError, match="Spawn error"):
        await backend.invoke("Q")


async def test_cli_timeout_kills_process():
    script = "import time; time.sleep(30)"
    backend = CliBackend(_cli_config([sys.executable, "-c", script], timeout_sec=0.2))
    with pytest.raises(BackendError, match="timed out"):
        await backend.invoke("Q")


async def test_cli_cancel_kills_process(monkeypatch):
    import asyncio

    spawned = []
    real_exec = asyncio.create_subprocess_exec

    async def recording_exec(*args, **kwargs):
        proc = await real_exec(*args, **kwargs)
        spawned.append(proc)
        return proc

    monkeypatch.setattr(asyncio, "create_subprocess_exec", recording_exec)
    backend = CliBackend(_cli_config([sys.executable, "-c", "import time; time.sleep(30)"]))

    task = asyncio.create_task(backend.invoke("Q"))
    while not spawned:
        await asyncio.sleep(0.01)
    await asyncio.sleep(0.1)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert spawned[0].returncode is not None
