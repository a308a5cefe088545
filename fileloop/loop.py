"""The file-access conversation loop.

One top-level call dispatches the user's message, then keeps feeding the
model the files it asks for until it answers, stops asking, or runs out
of continuations. Pending responses sit in a work queue; continuations
are entered on an ExitStack so the depth unwinds on every exit path.
"""

import logging
from collections import deque
from contextlib import ExitStack
from dataclasses import dataclass, field

from . import fmt
from .commands import CommandResult, interpret_commands
from .directives import AnswerDirective, FilesDirective, extract
from .dispatch import DUPLICATE_SENTINEL, DispatchResult
from .messages import estimate_tokens
from .prompts import FOLLOW_UP_PROMPT
from .registry import (
    FileReference,
    RegistryError,
    find_file,
    is_binary,
    placeholder_description,
)
from .report import AgentError, ConfigError, TransportError
from .resolver import FileResult, format_file_results, resolve_files

logger = logging.getLogger(__name__)

DESCRIBE_SYSTEM_PROMPT = (
    "You write short descriptions of project files for other developers. "
    "Focus on what the file is for and how it is used or interacted with. "
    "You may look at other files in the project if that helps."
)


@dataclass
class LoopResult:
    success: bool
    response: str
    opened_files: list[FileReference] = field(default_factory=list)
    executed_commands: list[CommandResult] = field(default_factory=list)
    recursion_limit_hit: bool = False
    error: str | None = None
    final_answer: str | None = None
    duplicate: bool = False
    stalled: bool = False
    dispatches: int = 0
    max_depth: int = 0

    def to_dict(self) -> dict:
        d = {
            "success": self.success,
            "response": self.response,
            "opened_files": [ref.to_dict() for ref in self.opened_files],
            "executed_commands": [c.to_dict() for c in self.executed_commands],
            "recursion_limit_hit": self.recursion_limit_hit,
        }
        if self.error is not None:
            d["error"] = self.error
        if self.final_answer is not None:
            d["final_answer"] = self.final_answer
        if self.duplicate:
            d["duplicate"] = True
        if self.stalled:
            d["stalled"] = True
        d["dispatches"] = self.dispatches
        d["max_depth"] = self.max_depth
        return d


@dataclass
class ConversationResult:
    turns: int
    complete: bool
    results: list[LoopResult]
    final_answer: str | None = None


async def _refresh_system(session) -> None:
    try:
        content = await session.context.system_prompt(session.registry)
    except RegistryError as e:
        logger.warning("Could not list files for the system prompt: %s", e)
        return
    if content is not None:
        session.conversation.set_system(content)


async def _dispatch(session, on_chunk) -> DispatchResult:
    """Send the whole history, record timing, append the reply."""
    messages = session.conversation.messages()
    depth = session.recursion.depth
    token_est = estimate_tokens(messages)
    if session.verbose:
        fmt.dispatch_header(depth, session.recursion.limit, token_est)

    try:
        if session.verbose and not session.dispatcher.stream:
            with fmt.llm_spinner():
                res = await session.dispatcher.dispatch(messages, on_chunk=on_chunk)
        else:
            res = await session.dispatcher.dispatch(messages, on_chunk=on_chunk)
    except TransportError as e:
        if session.report is not None:
            session.report.record_dispatch(
                depth, 0.0, token_est, streamed=session.dispatcher.stream, error=str(e)
            )
        raise

    if session.verbose:
        fmt.llm_timing(res.elapsed, res.streamed)
    if session.report is not None:
        session.report.record_dispatch(
            depth, res.elapsed, token_est, streamed=res.streamed
        )
    session.conversation.append("assistant", res.text)
    return res


def _note_results(session, results: list[FileResult], result: LoopResult, seen: set):
    depth = session.recursion.depth
    for r in results:
        if session.report is not None:
            session.report.record_file_request(
                depth,
                r.file_name,
                r.success,
                cached=r.cached,
                binary=r.binary,
                error=r.error,
            )
        if session.verbose:
            if not r.success:
                fmt.file_error(r.file_name, r.error or "unknown error")
            elif r.binary:
                fmt.file_binary(r.file_name)
            else:
                fmt.file_opened(r.file_name, len(r.content or ""), cached=r.cached)
        if r.success and not r.binary and r.file_ref is not None:
            if r.file_ref.id not in seen:
                seen.add(r.file_ref.id)
                result.opened_files.append(r.file_ref)


async def _apply_commands(session, text: str) -> list[CommandResult]:
    executed = await interpret_commands(text, session.registry)
    for c in executed:
        if c.success and c.file_ref is not None:
            session.cache.invalidate(c.file_ref.original_path)
        if session.report is not None:
            session.report.record_command(c.command, c.file_name, c.success, c.error)
        if session.verbose:
            fmt.command_result(c.command, c.file_name, c.error)
    return executed


async def process_message(
    session, user_message: str, *, on_chunk=None, check_duplicate: bool = True
) -> LoopResult:
    """Run one top-level turn of the conversation.

    Transport and configuration failures end the turn with success=False
    and an "Error:" response; nothing else is raised to the caller. A
    configuration failure leaves the history untouched.
    """
    try:
        session.dispatcher
    except ConfigError as e:
        logger.debug("no usable model gateway: %s", e)
        return LoopResult(success=False, response=f"Error: {e}", error=str(e))

    if check_duplicate and session.guard.is_duplicate(user_message):
        logger.info("Duplicate message suppressed")
        if session.report is not None:
            session.report.record_duplicate()
        if session.verbose:
            fmt.warning("identical message sent again, ignoring it")
        return LoopResult(success=True, response=DUPLICATE_SENTINEL, duplicate=True)

    rc = session.recursion
    rc.begin()
    result = LoopResult(success=True, response="")
    seen: set[str] = set()

    await _refresh_system(session)
    session.conversation.append("user", user_message)

    with ExitStack() as stack:
        try:
            pending = deque([await _dispatch(session, on_chunk)])
            result.dispatches += 1
            while pending:
                text = pending.popleft().text
                result.response = text
                directive, parser = extract(text)
                if session.report is not None:
                    session.report.record_directive(
                        rc.depth, directive.kind if directive else None, parser
                    )
                if session.verbose:
                    fmt.directive(directive.kind if directive else None, parser)

                if isinstance(directive, AnswerDirective):
                    result.response = directive.content
                    result.final_answer = directive.content
                    break

                if isinstance(directive, FilesDirective):
                    if not rc.note_request(directive.files):
                        result.stalled = True
                        if session.verbose:
                            fmt.stalled(directive.files)
                        break
                    if not rc.can_continue():
                        rc.mark_limit_hit()
                        result.recursion_limit_hit = True
                        if session.report is not None:
                            session.report.record_recursion_limit(rc.depth, rc.limit)
                        if session.verbose:
                            fmt.recursion_limit(rc.limit)
                        break
                    files = await resolve_files(
                        directive.files, session.registry, session.cache
                    )
                    stack.enter_context(rc.continuation())
                    _note_results(session, files, result, seen)
                    session.conversation.append("user", format_file_results(files))
                    pending.append(await _dispatch(session, on_chunk))
                    result.dispatches += 1
                    continue

                result.executed_commands = await _apply_commands(session, text)
        except AgentError as e:
            logger.debug("dispatch failed at depth %d: %s", rc.depth, e)
            result.success = False
            result.error = str(e)
            result.response = f"Error: {e}"

    result.max_depth = rc.max_depth
    return result


async def run_conversation(
    session, initial: str, max_turns: int = 5, auto_follow_up: bool = True
) -> ConversationResult:
    """Keep the conversation going until the model gives a final answer.

    A turn that opened files but did not answer is followed by a short
    "continue" message, up to max_turns turns.
    """
    results: list[LoopResult] = []
    message = initial
    check_duplicate = True
    for _ in range(max_turns):
        r = await process_message(session, message, check_duplicate=check_duplicate)
        results.append(r)
        if not r.success or r.duplicate or r.final_answer is not None:
            break
        if not (auto_follow_up and r.opened_files):
            break
        message = FOLLOW_UP_PROMPT
        check_duplicate = False

    final = results[-1].final_answer if results else None
    return ConversationResult(
        turns=len(results),
        complete=final is not None,
        results=results,
        final_answer=final,
    )


async def describe_file(session, file_name: str) -> str:
    """Ask the model to describe one file and store it in the registry.

    Falls back to an extension-based placeholder when the model cannot
    produce a description.
    """
    refs = await session.registry.list()
    ref = find_file(refs, file_name)
    if ref is None:
        raise RegistryError(f"File not found: {file_name}")

    description = placeholder_description(ref.name)
    if not is_binary(ref.name):
        try:
            content = await session.registry.read(ref)
            scratch = session.spawn(system_prompt=DESCRIBE_SYSTEM_PROMPT)
            r = await scratch.process_message(
                f'Please generate a concise yet comprehensive description for the file "{ref.name}" '
                "that focuses on how it would be used or interacted with.\n\n"
                f"File: {ref.original_path}\nContent:\n\n{content}",
                check_duplicate=False,
            )
            if r.success and r.response.strip() and not r.recursion_limit_hit:
                description = r.response.strip()
            else:
                logger.info("No description generated for %s: %s", ref.name, r.error)
        except (RegistryError, ConfigError) as e:
            logger.warning("Describing %s failed: %s", ref.name, e)

    await session.registry.update_description(ref.original_path, description)
    return description
