"""Public library API for fileloop: the Session class."""

import asyncio

from .dispatch import Dispatcher, DuplicateGuard, LiteLLMGateway
from .loop import LoopResult, describe_file, process_message, run_conversation
from .messages import ConversationHistory
from .prompts import ContextProvider
from .recursion import DEFAULT_RECURSION_LIMIT, RecursionController
from .registry import DirectoryRegistry, FileRegistry
from .report import ReportCollector
from .resolver import FileCache


class Session:
    """Programmatic interface to the file-access loop.

    Owns everything that lives across turns: conversation history, the
    recursion controller, the file cache and the duplicate guard. Separate
    sessions share nothing but, possibly, the registry and gateway.

    `registry` is a FileRegistry, or a directory path to wrap in a
    DirectoryRegistry. Without a `gateway`, one is built from the provider
    settings on first use.
    """

    def __init__(
        self,
        registry: "FileRegistry | str",
        *,
        gateway=None,
        provider: str = "lmstudio",
        model: str | None = None,
        api_key: str | None = None,
        base_url: str | None = None,
        stream: bool = False,
        recursion_limit: int = DEFAULT_RECURSION_LIMIT,
        duplicate_window: float = 2.0,
        temperature: float | None = None,
        max_output_tokens: int | None = None,
        system_prompt: str | None = None,
        no_system_prompt: bool = False,
        verbose: bool = False,
        report: bool = False,
    ):
        if isinstance(registry, str):
            registry = DirectoryRegistry(registry)
        self.registry = registry
        self.provider = provider
        self.model = model
        self.api_key = api_key
        self.base_url = base_url
        self.stream = stream
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens
        self.verbose = verbose

        self._gateway = gateway
        self._dispatcher: Dispatcher | None = None
        self.conversation = ConversationHistory()
        self.recursion = RecursionController(recursion_limit)
        self.cache = FileCache()
        self.guard = DuplicateGuard(window=duplicate_window)
        self.context = ContextProvider(system_prompt, no_system_prompt)
        self.report = ReportCollector() if report else None

        if verbose:
            from . import fmt

            fmt.init()

    @property
    def gateway(self):
        if self._gateway is None:
            self._gateway = LiteLLMGateway(
                provider=self.provider,
                model=self.model,
                api_key=self.api_key,
                base_url=self.base_url,
                temperature=self.temperature,
                max_output_tokens=self.max_output_tokens,
            )
        return self._gateway

    @property
    def dispatcher(self) -> Dispatcher:
        if self._dispatcher is None:
            self._dispatcher = Dispatcher(self.gateway, stream=self.stream)
        return self._dispatcher

    @property
    def history(self) -> list[dict]:
        """A copy of the conversation so far."""
        return self.conversation.messages()

    def spawn(self, *, system_prompt: str | None = None) -> "Session":
        """A fresh session over the same registry and gateway."""
        return Session(
            self.registry,
            gateway=self.gateway,
            recursion_limit=self.recursion.limit,
            system_prompt=system_prompt,
        )

    async def process_message(
        self, message: str, *, on_chunk=None, check_duplicate: bool = True
    ) -> LoopResult:
        return await process_message(
            self, message, on_chunk=on_chunk, check_duplicate=check_duplicate
        )

    async def converse(
        self, message: str, *, max_turns: int = 5, auto_follow_up: bool = True
    ):
        return await run_conversation(
            self, message, max_turns=max_turns, auto_follow_up=auto_follow_up
        )

    async def describe(self, file_name: str) -> str:
        return await describe_file(self, file_name)

    def ask(self, question: str) -> LoopResult:
        """Synchronous wrapper around process_message(); keeps context across calls."""
        return asyncio.run(self.process_message(question))

    def reset(self) -> None:
        """Clear conversation state. The next message starts a fresh conversation."""
        self.conversation.reset()
        self.cache.clear()
        self.guard.reset()
        self.recursion.reset()
