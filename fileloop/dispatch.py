"""Model gateway, duplicate guard and the streaming-aware dispatcher."""

import hashlib
import inspect
import logging
import time
from dataclasses import dataclass

from .report import ConfigError, TransportError

logger = logging.getLogger(__name__)

PROVIDERS = ("lmstudio", "openrouter", "deepseek", "huggingface")

DEFAULT_LMSTUDIO_URL = "http://127.0.0.1:1234"

DUPLICATE_SENTINEL = "Duplicate message detected, request already in progress..."


def _bare(model_id: str, prefix: str) -> str:
    # Strip only a doubled LiteLLM prefix so org names such as
    # "openrouter/free" survive.
    doubled = f"{prefix}/{prefix}/"
    return model_id[len(prefix) + 1 :] if model_id.startswith(doubled) else model_id


def route_model(provider: str, model_id: str, base_url: str | None, api_key: str | None):
    """Return (litellm model string, extra completion kwargs) for a provider."""
    if not model_id:
        raise ConfigError("no model specified")
    if provider == "lmstudio":
        url = (base_url or DEFAULT_LMSTUDIO_URL).rstrip("/")
        return f"openai/{model_id}", {"api_base": f"{url}/v1", "api_key": "lm-studio"}
    if provider == "huggingface":
        model_str = f"huggingface/{model_id.removeprefix('huggingface/')}"
    elif provider == "openrouter":
        model_str = f"openrouter/{_bare(model_id, 'openrouter')}"
    elif provider == "deepseek":
        model_str = f"deepseek/{model_id.removeprefix('deepseek/')}"
    else:
        raise ConfigError(f"unknown provider {provider!r}")
    kwargs = {"api_key": api_key}
    if base_url:
        kwargs["api_base"] = base_url
    return model_str, kwargs


class LiteLLMGateway:
    """Model gateway backed by litellm.acompletion."""

    def __init__(
        self,
        provider: str = "lmstudio",
        model: str | None = None,
        api_key: str | None = None,
        base_url: str | None = None,
        temperature: float | None = None,
        max_output_tokens: int | None = None,
    ):
        self.provider = provider
        self.model = model
        self.model_str, self._route_kwargs = route_model(
            provider, model, base_url, api_key
        )
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens

    def _completion_kwargs(self, messages: list[dict], stream: bool) -> dict:
        kwargs = dict(model=self.model_str, messages=messages, **self._route_kwargs)
        if stream:
            kwargs["stream"] = True
        if self.max_output_tokens is not None:
            kwargs["max_tokens"] = self.max_output_tokens
        if self.temperature is not None:
            kwargs["temperature"] = self.temperature
        return kwargs

    async def complete(self, messages: list[dict], stream: bool = False):
        """Return the response text, or an async iterator of deltas when streaming."""
        import litellm

        litellm.suppress_debug_info = True

        try:
            response = await litellm.acompletion(
                **self._completion_kwargs(messages, stream)
            )
        except Exception as e:
            raise TransportError(f"LLM call failed: {e}") from e

        if stream:
            return self._deltas(response)
        try:
            return response.choices[0].message.content or ""
        except (AttributeError, IndexError) as e:
            raise TransportError(f"malformed LLM response: {e}") from e

    async def _deltas(self, response):
        try:
            async for chunk in response:
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta
                text = getattr(delta, "content", None)
                if text:
                    yield text
        except TransportError:
            raise
        except Exception as e:
            raise TransportError(f"LLM stream failed: {e}") from e


class DuplicateGuard:
    """Best-effort suppression of an identical message sent twice in a row.

    Compares against the previous message only, within `window` seconds.
    This is a UX guard against double submission, not an idempotency
    mechanism: concurrent callers are not serialized.
    """

    def __init__(self, window: float = 2.0, clock=time.monotonic):
        self.window = window
        self._clock = clock
        self._last_hash: str | None = None
        self._last_time: float | None = None

    def is_duplicate(self, message: str) -> bool:
        digest = hashlib.sha256(message.encode("utf-8")).hexdigest()
        now = self._clock()
        if (
            digest == self._last_hash
            and self._last_time is not None
            and now - self._last_time < self.window
        ):
            return True
        self._last_hash = digest
        self._last_time = now
        return False

    def reset(self) -> None:
        self._last_hash = None
        self._last_time = None


@dataclass
class DispatchResult:
    text: str
    elapsed: float
    streamed: bool


class Dispatcher:
    """Send messages through a gateway, streaming when asked to."""

    def __init__(self, gateway, stream: bool = False, on_chunk=None):
        self.gateway = gateway
        self.stream = stream
        self.on_chunk = on_chunk

    async def dispatch(self, messages: list[dict], on_chunk=None) -> DispatchResult:
        """Run one model call. TransportError propagates to the caller."""
        callback = on_chunk or self.on_chunk
        t0 = time.monotonic()
        if not self.stream:
            text = await self.gateway.complete(messages, stream=False)
            return DispatchResult(text or "", time.monotonic() - t0, False)

        deltas = await self.gateway.complete(messages, stream=True)
        text = ""
        async for delta in deltas:
            text += delta
            if callback is not None:
                ret = callback(text)
                if inspect.isawaitable(ret):
                    await ret
        logger.debug("streamed %d chars", len(text))
        return DispatchResult(text, time.monotonic() - t0, True)
