"""
Integration tests for structured generation through the shared client handle.

The configured client, adapter, execution engine, JSON recovery, and the
strict-JSON fallback run together; only the vendor SDK client is faked.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path
from types import SimpleNamespace
from typing import Any

import pytest

from promptsmith.config import default_config, load_config, merge_config
from promptsmith.llm import (
    ClassifiedError,
    ErrorKind,
    ResponseTooLargeError,
    StructuredRequestOptions,
    build_client_from_config,
    execute_llm_with_json_response,
    get_provider_info,
    reset_llm_client,
)
from promptsmith.observability.telemetry import LLMRequestEvent, default_telemetry_bus


class InternalServerError(Exception):
    status_code = 500


@dataclass(slots=True)
class _FakeChatCompletions:
    replies: deque[str | BaseException]
    requests: list[dict[str, Any]] = field(default_factory=list)

    async def create(self, **kwargs: Any) -> object:
        self.requests.append(kwargs)
        reply = self.replies.popleft()
        if isinstance(reply, BaseException):
            raise reply
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=reply))])


@dataclass(slots=True)
class _FakeGoogleModels:
    responses: deque[object]
    requests: list[dict[str, Any]] = field(default_factory=list)

    async def generate_content(self, **kwargs: Any) -> object:
        self.requests.append(kwargs)
        return self.responses.popleft()


def _install_openai(replies: list[str | BaseException]) -> _FakeChatCompletions:
    completions = _FakeChatCompletions(deque(replies))
    config = merge_config(
        default_config(),
        {"retry": {"base_delay_ms": 100, "max_delay_ms": 1000}, "llm": {"max_tokens": 512}},
    )

    def factory() -> Any:
        return build_client_from_config(
            config,
            environ={"OPENAI_API_KEY": "sk-test"},
            client=SimpleNamespace(chat=SimpleNamespace(completions=completions)),
        )

    reset_llm_client(factory)
    return completions


@pytest.fixture(autouse=True)
def _restore_shared_handle() -> Iterator[None]:
    yield
    reset_llm_client(build_client_from_config)


def _plan(value: Any) -> dict[str, Any]:
    if not isinstance(value, dict) or "steps" not in value:
        raise ValueError("missing steps")
    return value


@pytest.mark.integration
async def test_transient_failure_then_fenced_json() -> None:
    completions = _install_openai(
        [InternalServerError("upstream hiccup"), '```json\n{"steps": ["lint", "test"]}\n```']
    )
    events: list[LLMRequestEvent] = []
    token = default_telemetry_bus().subscribe(events.append)
    try:
        result = await execute_llm_with_json_response(
            "Plan the release", _plan, ErrorKind.BACKEND_FAILED, "release plan"
        )
    finally:
        default_telemetry_bus().unsubscribe(token)

    assert result.value == {"steps": ["lint", "test"]}
    assert result.used_fallback is False
    assert len(completions.requests) == 2
    assert completions.requests[0]["max_tokens"] == 1500
    assert events[-1].attempts == 2
    assert events[-1].ok is True


@pytest.mark.integration
async def test_prose_reply_recovered_by_strict_fallback() -> None:
    completions = _install_openai(["Sure! I will think about it.", '{"steps": []}'])

    result = await execute_llm_with_json_response(
        "Plan the release",
        _plan,
        ErrorKind.INVALID_INPUT,
        "release plan",
        StructuredRequestOptions(retry_on_parse_failure=True),
    )

    assert result.used_fallback is True
    assert result.value == {"steps": []}
    last_prompt = completions.requests[1]["messages"][0]["content"]
    assert last_prompt.startswith("Plan the release")
    assert "STRICT JSON" in last_prompt


@pytest.mark.integration
async def test_missing_credentials_are_reported_and_retried_later(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    reset_llm_client(lambda: build_client_from_config(default_config()))

    with pytest.raises(ClassifiedError) as excinfo:
        await get_provider_info()
    assert excinfo.value.kind is ErrorKind.INVALID_INPUT

    monkeypatch.setenv("OPENAI_API_KEY", "sk-later")
    info = await get_provider_info()

    assert info.provider == "openai"
    assert info.model == "gpt-4o"


@pytest.mark.integration
async def test_google_safety_block_is_not_retried() -> None:
    blocked = SimpleNamespace(candidates=[SimpleNamespace(finish_reason="SAFETY")], text=None)
    models = _FakeGoogleModels(deque([blocked, blocked]))
    config = merge_config(default_config(), {"llm": {"provider": "google"}})
    client = build_client_from_config(
        config,
        environ={"GOOGLE_API_KEY": "k"},
        client=SimpleNamespace(aio=SimpleNamespace(models=models)),
    )

    with pytest.raises(ClassifiedError) as excinfo:
        await client.generate_text("Describe the incident")

    assert excinfo.value.kind is ErrorKind.BACKEND_FAILED
    assert excinfo.value.message == "Content filtered by safety settings"
    assert len(models.requests) == 1


@pytest.mark.integration
async def test_configured_response_length_guard_applies_to_entry_point(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    monkeypatch.chdir(tmp_path)
    config = load_config(
        environ={"PROMPTSMITH_LLM_MAX_RESPONSE_LENGTH": "10", "OPENAI_API_KEY": "sk-test"}
    )
    completions = _FakeChatCompletions(deque(['{"steps": ["lint", "test", "package", "ship"]}']))
    reset_llm_client(
        lambda: build_client_from_config(
            config,
            environ={"OPENAI_API_KEY": "sk-test"},
            client=SimpleNamespace(chat=SimpleNamespace(completions=completions)),
        )
    )

    with pytest.raises(ResponseTooLargeError) as excinfo:
        await execute_llm_with_json_response(
            "Plan the release", _plan, ErrorKind.BACKEND_FAILED, "release plan"
        )

    assert excinfo.value.kind is ErrorKind.BACKEND_FAILED
    assert "(max: 10)" in excinfo.value.message


@pytest.mark.integration
async def test_structured_section_supplies_default_options() -> None:
    completions = _FakeChatCompletions(deque(["No JSON here, sorry.", '{"steps": ["ship"]}']))
    config = merge_config(
        default_config(),
        {"structured": {"max_tokens": 321, "retry_on_parse_failure": True}},
    )
    reset_llm_client(
        lambda: build_client_from_config(
            config,
            environ={"OPENAI_API_KEY": "sk-test"},
            client=SimpleNamespace(chat=SimpleNamespace(completions=completions)),
        )
    )

    result = await execute_llm_with_json_response(
        "Plan the release", _plan, ErrorKind.BACKEND_FAILED, "release plan"
    )

    assert result.used_fallback is True
    assert result.value == {"steps": ["ship"]}
    assert [request["max_tokens"] for request in completions.requests] == [321, 321]
