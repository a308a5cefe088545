"""Tests for the LiteLLM gateway, duplicate guard and dispatcher."""

import asyncio
import types
from unittest.mock import AsyncMock, patch

import pytest

from fileloop.dispatch import (
    DispatchResult,
    Dispatcher,
    DuplicateGuard,
    LiteLLMGateway,
    route_model,
)
from fileloop.report import ConfigError, TransportError


def _response(content):
    msg = types.SimpleNamespace(content=content)
    return types.SimpleNamespace(choices=[types.SimpleNamespace(message=msg)])


def _chunk(text):
    delta = types.SimpleNamespace(content=text)
    return types.SimpleNamespace(choices=[types.SimpleNamespace(delta=delta)])


class FakeStream:
    """Async-iterable stand-in for litellm's stream wrapper."""

    def __init__(self, chunks, fail_after=None):
        self.chunks = chunks
        self.fail_after = fail_after

    def __aiter__(self):
        return self._gen()

    async def _gen(self):
        for i, c in enumerate(self.chunks):
            if self.fail_after is not None and i == self.fail_after:
                raise ConnectionError("connection reset")
            yield c


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


# ---------------------------------------------------------------------------
# Provider routing
# ---------------------------------------------------------------------------


class TestRouteModel:
    def test_lmstudio(self):
        model, kwargs = route_model("lmstudio", "qwen3", None, None)
        assert model == "openai/qwen3"
        assert kwargs == {"api_base": "http://127.0.0.1:1234/v1", "api_key": "lm-studio"}

    def test_lmstudio_custom_url(self):
        _model, kwargs = route_model("lmstudio", "m", "http://box:9000/", None)
        assert kwargs["api_base"] == "http://box:9000/v1"

    def test_openrouter_keeps_org_names(self):
        assert route_model("openrouter", "openrouter/free", None, "k")[0] == "openrouter/openrouter/free"
        assert route_model("openrouter", "openrouter/openrouter/free", None, "k")[0] == "openrouter/openrouter/free"

    def test_deepseek(self):
        model, kwargs = route_model("deepseek", "deepseek-chat", None, "sk")
        assert model == "deepseek/deepseek-chat"
        assert kwargs == {"api_key": "sk"}

    def test_huggingface_with_base_url(self):
        model, kwargs = route_model("huggingface", "zai-org/GLM-5", "https://ep", "hf")
        assert model == "huggingface/zai-org/GLM-5"
        assert kwargs["api_base"] == "https://ep"

    def test_unknown_provider(self):
        with pytest.raises(ConfigError, match="unknown provider"):
            route_model("openai", "gpt", None, None)

    def test_missing_model(self):
        with pytest.raises(ConfigError, match="no model"):
            route_model("lmstudio", None, None, None)


# ---------------------------------------------------------------------------
# Gateway
# ---------------------------------------------------------------------------


class TestGateway:
    def test_complete_returns_text(self):
        gw = LiteLLMGateway("deepseek", "deepseek-chat", api_key="sk", temperature=0.2)
        mock = AsyncMock(return_value=_response("hello"))
        with patch("litellm.acompletion", mock):
            text = asyncio.run(gw.complete([{"role": "user", "content": "hi"}]))
        assert text == "hello"
        kwargs = mock.call_args.kwargs
        assert kwargs["model"] == "deepseek/deepseek-chat"
        assert kwargs["temperature"] == 0.2
        assert "stream" not in kwargs
        assert "max_tokens" not in kwargs

    def test_none_content_is_empty_string(self):
        gw = LiteLLMGateway("lmstudio", "m")
        with patch("litellm.acompletion", AsyncMock(return_value=_response(None))):
            assert asyncio.run(gw.complete([])) == ""

    def test_backend_failure_is_transport_error(self):
        gw = LiteLLMGateway("lmstudio", "m")
        with patch("litellm.acompletion", AsyncMock(side_effect=RuntimeError("401"))):
            with pytest.raises(TransportError, match="LLM call failed: 401"):
                asyncio.run(gw.complete([]))

    def test_stream_yields_deltas(self):
        gw = LiteLLMGateway("lmstudio", "m", max_output_tokens=64)
        stream = FakeStream([_chunk("Hel"), _chunk(None), _chunk("lo")])
        mock = AsyncMock(return_value=stream)

        async def collect():
            return [d async for d in await gw.complete([], stream=True)]

        with patch("litellm.acompletion", mock):
            assert asyncio.run(collect()) == ["Hel", "lo"]
        assert mock.call_args.kwargs["stream"] is True
        assert mock.call_args.kwargs["max_tokens"] == 64

    def test_mid_stream_failure_is_transport_error(self):
        gw = LiteLLMGateway("lmstudio", "m")
        stream = FakeStream([_chunk("a"), _chunk("b")], fail_after=1)

        async def collect():
            return [d async for d in await gw.complete([], stream=True)]

        with patch("litellm.acompletion", AsyncMock(return_value=stream)):
            with pytest.raises(TransportError, match="stream failed"):
                asyncio.run(collect())


# ---------------------------------------------------------------------------
# Duplicate guard
# ---------------------------------------------------------------------------


class TestDuplicateGuard:
    def test_identical_within_window(self):
        clock = FakeClock()
        guard = DuplicateGuard(window=2.0, clock=clock)
        assert not guard.is_duplicate("hi")
        clock.now += 1.5
        assert guard.is_duplicate("hi")

    def test_identical_after_window(self):
        clock = FakeClock()
        guard = DuplicateGuard(window=2.0, clock=clock)
        guard.is_duplicate("hi")
        clock.now += 2.5
        assert not guard.is_duplicate("hi")

    def test_different_message_resets(self):
        clock = FakeClock()
        guard = DuplicateGuard(clock=clock)
        guard.is_duplicate("a")
        guard.is_duplicate("b")
        assert not guard.is_duplicate("a")

    def test_reset(self):
        guard = DuplicateGuard(clock=FakeClock())
        guard.is_duplicate("a")
        guard.reset()
        assert not guard.is_duplicate("a")


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------


class ScriptedGateway:
    def __init__(self, text, deltas=None):
        self.text = text
        self.deltas = deltas or []
        self.calls = []

    async def complete(self, messages, stream=False):
        self.calls.append(stream)
        if not stream:
            return self.text

        async def gen():
            for d in self.deltas:
                yield d

        return gen()


class TestDispatcher:
    def test_non_streaming(self):
        d = Dispatcher(ScriptedGateway("full"))
        res = asyncio.run(d.dispatch([]))
        assert isinstance(res, DispatchResult)
        assert res.text == "full"
        assert res.streamed is False

    def test_streaming_calls_on_chunk_with_running_totals(self):
        seen = []
        d = Dispatcher(ScriptedGateway("", ["a", "b", "c"]), stream=True, on_chunk=seen.append)
        res = asyncio.run(d.dispatch([]))
        assert res.text == "abc"
        assert res.streamed is True
        assert seen == ["a", "ab", "abc"]

    def test_async_on_chunk(self):
        seen = []

        async def on_chunk(text):
            seen.append(text)

        d = Dispatcher(ScriptedGateway("", ["x", "y"]), stream=True)
        asyncio.run(d.dispatch([], on_chunk=on_chunk))
        assert seen == ["x", "xy"]
