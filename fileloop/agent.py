"""Command-line entry point: one-shot questions and the interactive REPL."""

import argparse
import asyncio
import logging
import os
import sys
from datetime import datetime
from importlib import metadata
from pathlib import Path

from . import fmt
from .config import (
    _UNSET,
    PROVIDERS,
    apply_config_to_args,
    config_to_session_kwargs,
    generate_config,
    global_config_dir,
    load_config,
)
from .loop import LoopResult
from .messages import estimate_tokens
from .registry import RegistryError
from .report import AgentError, ConfigError
from .session import Session

MAX_HISTORY_SIZE = 500 * 1024  # 500KB

API_KEY_ENV = {
    "openrouter": "OPENROUTER_API_KEY",
    "deepseek": "DEEPSEEK_API_KEY",
    "huggingface": "HF_TOKEN",
}


def _safe_history_path(base_dir: str) -> Path:
    """Build history path, verify it resolves inside base_dir."""
    base = Path(base_dir).resolve()
    history_path = (Path(base_dir) / ".fileloop" / "HISTORY.md").resolve()
    if not history_path.is_relative_to(base):
        raise ValueError(f"history path {history_path} escapes base directory {base}")
    return history_path


def append_history(base_dir: str, question: str, answer: str) -> None:
    """Append a timestamped Q&A entry to .fileloop/HISTORY.md."""
    if not answer or not answer.strip():
        return

    try:
        history_path = _safe_history_path(base_dir)
    except ValueError:
        fmt.warning("history path escapes base directory, skipping write")
        return

    try:
        history_path.parent.mkdir(parents=True, exist_ok=True)

        current_size = history_path.stat().st_size if history_path.exists() else 0
        if current_size >= MAX_HISTORY_SIZE:
            fmt.warning("history file at capacity, skipping write")
            return

        q_display = question[:200] + "..." if len(question) > 200 else question
        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        entry = f"---\n\n**{timestamp}**: *{q_display}*\n\n{answer}\n\n"

        with history_path.open("a", encoding="utf-8") as f:
            f.write(entry)
    except OSError:
        fmt.warning("failed to write history entry")


def setup_logging(log_file: str | None) -> logging.Handler | None:
    """Send the package's internal log records to log_file at DEBUG level."""
    if not log_file:
        return None
    handler = logging.FileHandler(log_file, encoding="utf-8")
    handler.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
    )
    logger = logging.getLogger("fileloop")
    logger.setLevel(logging.DEBUG)
    logger.addHandler(handler)
    return handler


def resolve_api_key(provider: str, api_key: str | None) -> str | None:
    """CLI/config key first, then the provider's environment variable."""
    if api_key:
        return api_key
    env = API_KEY_ENV.get(provider)
    return os.environ.get(env) if env else None


def build_parser():
    """Build and return the argument parser.

    Options that may also come from a config file default to _UNSET so
    apply_config_to_args() can tell them apart from explicit CLI values.
    """
    parser = argparse.ArgumentParser(
        prog="fileloop",
        usage="%(prog)s [options] <question>\n       %(prog)s --repl [options] [question]",
        description="Ask a model about a project; it reads the files it asks for and can edit them.",
    )
    parser.add_argument(
        "--version",
        action="store_true",
        help="Print the version and exit.",
    )
    parser.add_argument(
        "question", nargs="?", default=None, help="The question or task for the model."
    )
    parser.add_argument(
        "--repl",
        action="store_true",
        help="Start an interactive session instead of answering a single question.",
    )
    parser.add_argument(
        "--provider",
        choices=list(PROVIDERS),
        default=_UNSET,
        help="LLM provider: lmstudio (local), openrouter, deepseek, huggingface.",
    )
    parser.add_argument(
        "--model",
        type=str,
        default=_UNSET,
        help="Model identifier (required).",
    )
    parser.add_argument(
        "--api-key",
        type=str,
        default=_UNSET,
        help="API key for the provider (overrides env var).",
    )
    parser.add_argument(
        "--base-url",
        default=_UNSET,
        help="Server base URL (default: http://127.0.0.1:1234 for lmstudio).",
    )
    parser.add_argument(
        "--max-output-tokens",
        type=int,
        default=_UNSET,
        help="Maximum output tokens (default: provider default).",
    )
    parser.add_argument(
        "--temperature",
        type=float,
        default=_UNSET,
        help="Sampling temperature (default: provider default).",
    )
    parser.add_argument(
        "--stream",
        action="store_true",
        default=_UNSET,
        help="Stream the response and show it as it arrives.",
    )
    parser.add_argument(
        "--recursion-limit",
        type=int,
        default=_UNSET,
        help="Maximum file-result continuations per message (default: 10).",
    )
    parser.add_argument(
        "--duplicate-window",
        type=float,
        default=_UNSET,
        help="Ignore a message identical to the previous one within this many seconds (default: 2).",
    )

    prompt_group = parser.add_mutually_exclusive_group()
    prompt_group.add_argument(
        "--system-prompt",
        type=str,
        default=_UNSET,
        help="Replace the built-in base instructions.",
    )
    prompt_group.add_argument(
        "--no-system-prompt",
        action="store_true",
        default=_UNSET,
        help="Omit the system message entirely.",
    )

    parser.add_argument(
        "-q",
        "--quiet",
        action="store_true",
        default=_UNSET,
        help="Suppress all diagnostics; only print the final result.",
    )
    parser.add_argument(
        "--base-dir",
        type=str,
        default=".",
        help="Project directory the model can read and edit (default: current directory).",
    )
    parser.add_argument(
        "--report",
        type=str,
        default=None,
        metavar="FILE",
        help="Write a JSON run report to FILE. Incompatible with --repl.",
    )
    parser.add_argument(
        "--log-file",
        type=str,
        default=_UNSET,
        metavar="FILE",
        help="Write internal debug logs to FILE.",
    )

    color_group = parser.add_mutually_exclusive_group()
    color_group.add_argument(
        "--color",
        action="store_true",
        default=_UNSET,
        help="Force ANSI color even when stderr is not a TTY.",
    )
    color_group.add_argument(
        "--no-color",
        action="store_true",
        default=_UNSET,
        help="Disable ANSI color even when stderr is a TTY.",
    )

    parser.add_argument(
        "--no-history",
        action="store_true",
        default=_UNSET,
        help="Don't write responses to .fileloop/HISTORY.md",
    )
    parser.add_argument(
        "--init-config",
        action="store_true",
        help="Write a commented config template and exit.",
    )
    parser.add_argument(
        "--project",
        action="store_true",
        help="With --init-config, write <base-dir>/fileloop.toml instead of the global file.",
    )

    return parser


def _init_config(args) -> None:
    if args.project:
        path = Path(args.base_dir) / "fileloop.toml"
    else:
        path = global_config_dir() / "config.toml"
    if path.exists():
        raise ConfigError(f"{path} already exists, not overwriting")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(generate_config(project=args.project), encoding="utf-8")
    print(path)


def main():
    parser = build_parser()
    args = parser.parse_args()

    if args.version:
        try:
            version = metadata.version("fileloop")
        except metadata.PackageNotFoundError:
            version = "unknown"
        print(version)
        sys.exit(0)

    if args.init_config:
        try:
            _init_config(args)
        except (ConfigError, OSError) as e:
            fmt.error(str(e))
            sys.exit(1)
        sys.exit(0)

    try:
        config = load_config(Path(args.base_dir))
    except ConfigError as e:
        fmt.error(str(e))
        sys.exit(1)
    apply_config_to_args(args, config)
    args.verbose = not args.quiet

    if not args.repl and args.question is None:
        parser.error("question is required (or use --repl)")
    if args.report and args.repl:
        parser.error("--report is incompatible with --repl")
    if not Path(args.base_dir).is_dir():
        parser.error(f"--base-dir is not a directory: {args.base_dir}")

    setup_logging(args.log_file)

    try:
        session = build_session(args, parser)
    except AgentError as e:
        fmt.error(str(e))
        sys.exit(1)
    # After the session, which initializes its own console when verbose
    fmt.init(color=args.color, no_color=args.no_color)

    if args.repl:
        asyncio.run(repl_loop(session, args))
        return

    result = asyncio.run(run_question(session, args.question, args))
    sys.exit(finish_one_shot(session, result, args))


def build_session(args, parser) -> Session:
    if not args.model:
        parser.error("--model is required (or set 'model' in fileloop.toml)")
    api_key = resolve_api_key(args.provider, args.api_key)
    if args.provider in API_KEY_ENV and not api_key:
        parser.error(
            f"--api-key or {API_KEY_ENV[args.provider]} env var required "
            f"for {args.provider} provider"
        )

    kwargs = config_to_session_kwargs(
        {
            "provider": args.provider,
            "model": args.model,
            "api_key": api_key,
            "base_url": args.base_url,
            "stream": args.stream,
            "recursion_limit": args.recursion_limit,
            "duplicate_window": args.duplicate_window,
            "temperature": args.temperature,
            "max_output_tokens": args.max_output_tokens,
            "system_prompt": args.system_prompt,
            "no_system_prompt": args.no_system_prompt,
            "quiet": args.quiet,
        }
    )
    session = Session(str(Path(args.base_dir)), report=bool(args.report), **kwargs)
    # Build the gateway now so routing errors surface before the first call
    session.gateway
    return session


async def run_question(session: Session, question: str, args) -> LoopResult:
    """Process one message, rendering streamed text live when asked to."""
    if args.stream and args.verbose:
        with fmt.stream_view() as live:
            return await session.process_message(
                question, on_chunk=lambda text: fmt.stream_update(live, text)
            )
    return await session.process_message(question)


def _answer_of(result: LoopResult) -> str | None:
    if not result.success or result.duplicate:
        return None
    return result.final_answer if result.final_answer is not None else result.response


def _outcome(result: LoopResult) -> str:
    if not result.success:
        return "error"
    if result.recursion_limit_hit:
        return "recursion_limit"
    if result.stalled:
        return "stalled"
    return "ok"


def finish_one_shot(session: Session, result: LoopResult, args) -> int:
    """Print the result, write history and report. Returns the exit code."""
    outcome = _outcome(result)
    if result.success:
        exit_code = 2 if result.recursion_limit_hit else 0
    else:
        exit_code = 1
        fmt.error(result.error or "unknown error")

    answer = _answer_of(result)
    if answer is not None:
        print(answer)
        if not args.no_history:
            append_history(args.base_dir, args.question, answer)
    if args.verbose:
        _print_commands(result)
        fmt.completion(result.dispatches, outcome)

    if session.report is not None:
        session.report.finalize(
            task=args.question or "",
            model=args.model,
            provider=args.provider,
            settings={
                "stream": args.stream,
                "recursion_limit": args.recursion_limit,
                "duplicate_window": args.duplicate_window,
                "temperature": args.temperature,
                "max_output_tokens": args.max_output_tokens,
            },
            outcome=outcome,
            answer=answer,
            exit_code=exit_code,
            error_message=result.error,
        )
        try:
            session.report.write(args.report)
        except OSError as e:
            fmt.error(f"Failed to write report to {args.report}: {e}")
        else:
            if args.verbose:
                fmt.info(f"Report written to {args.report}")
    return exit_code


def _print_commands(result: LoopResult) -> None:
    ok = sum(1 for c in result.executed_commands if c.success)
    if result.executed_commands:
        fmt.info(f"{ok}/{len(result.executed_commands)} file commands applied")


def _repl_help() -> None:
    """Print available REPL commands."""
    fmt.info(
        "Available commands:\n"
        "  /help              Show this help message\n"
        "  /clear             Reset the conversation and file cache\n"
        "  /files             List the files the model can request\n"
        "  /describe <file>   Generate and store a description for a file\n"
        "  /exit, /quit       Exit the REPL"
    )


def _repl_clear(session: Session) -> None:
    dropped = len(session.history)
    session.reset()
    fmt.info(f"context cleared ({dropped} messages removed)")


async def _repl_files(session: Session) -> None:
    try:
        refs = await session.registry.list()
    except RegistryError as e:
        fmt.warning(str(e))
        return
    if not refs:
        fmt.info("no files")
        return
    lines = [f"{ref.original_path}  ({ref.size} bytes, {ref.status})" for ref in refs]
    fmt.info("\n  ".join(lines))


async def _repl_describe(session: Session, arg: str) -> None:
    name = arg.strip()
    if not name:
        fmt.warning("/describe requires a file name")
        return
    try:
        description = await session.describe(name)
    except RegistryError as e:
        fmt.warning(str(e))
        return
    print(description)


async def repl_loop(session: Session, args) -> None:
    """Interactive read-eval-print loop."""
    from prompt_toolkit import PromptSession
    from prompt_toolkit.formatted_text import FormattedText
    from prompt_toolkit.history import FileHistory

    history_path = os.path.join(args.base_dir, ".fileloop", "repl_history")
    os.makedirs(os.path.dirname(history_path), exist_ok=True)
    prompt = PromptSession(
        history=FileHistory(history_path),
        enable_history_search=True,
    )
    prompt_text = FormattedText([("bold fg:ansigreen", "fileloop> ")])

    if args.verbose:
        fmt.repl_banner()

    pending = args.question
    while True:
        if pending is not None:
            line, pending = pending, None
        else:
            try:
                print(file=sys.stderr)  # blank line before prompt
                line = await prompt.prompt_async(prompt_text)
            except (EOFError, KeyboardInterrupt):
                print(file=sys.stderr)  # newline after ^D / ^C
                break

        line = line.strip()
        if not line:
            continue

        # Only known commands are intercepted; unknown /foo goes to the model
        if line in ("/exit", "/quit"):
            break

        cmd_parts = line.split(None, 1)
        cmd = cmd_parts[0].lower()
        cmd_arg = cmd_parts[1] if len(cmd_parts) > 1 else ""

        if cmd == "/help":
            _repl_help()
            continue
        elif cmd == "/clear":
            _repl_clear(session)
            continue
        elif cmd == "/files":
            await _repl_files(session)
            continue
        elif cmd == "/describe":
            await _repl_describe(session, cmd_arg)
            continue

        try:
            result = await run_question(session, line, args)
        except KeyboardInterrupt:
            fmt.warning("interrupted, question aborted.")
            continue

        if not result.success:
            fmt.error(result.error or "unknown error")
            continue
        if result.duplicate:
            fmt.info("same message already sent, ignoring it")
            continue

        answer = _answer_of(result)
        if not args.no_history and answer:
            append_history(args.base_dir, line, answer)
        if answer is not None:
            print(answer)
        if args.verbose:
            _print_commands(result)
            fmt.context_stats("Conversation", estimate_tokens(session.history))
        if result.recursion_limit_hit:
            fmt.warning("recursion limit reached for this question.")


if __name__ == "__main__":
    main()
