"""ANSI-formatted stderr output using Rich."""

from rich.console import Console
from rich.live import Live
from rich.markup import escape
from rich.rule import Rule
from rich.text import Text

_console = Console(stderr=True)


def init(*, color: bool = False, no_color: bool = False) -> None:
    """Reconfigure the module-level console from CLI flags.

    Call once at startup, before any output.
    """
    global _console
    kwargs: dict = {"stderr": True}
    if color:
        kwargs["force_terminal"] = True
        kwargs["no_color"] = False
    if no_color:
        kwargs["no_color"] = True
    _console = Console(**kwargs)


# -- Dispatch structure ------------------------------------------------------


def dispatch_header(depth: int, limit: int, token_est: int) -> None:
    if depth == 0:
        title = f"Dispatch (~{token_est} tokens)"
    else:
        title = f"Continuation {depth}/{limit} (~{token_est} tokens)"
    _console.print(Rule(title, style="cyan"))


def llm_timing(elapsed: float, streamed: bool) -> None:
    text = Text()
    text.append(f"  LLM responded in {elapsed:.1f}s", style="green")
    if streamed:
        text.append("  (streamed)", style="green")
    _console.print(text)


def llm_spinner(label: str = "Waiting for LLM"):
    """Return a Rich Status context manager that spins on stderr."""
    return _console.status(f"  {label}", spinner="dots")


def stream_view() -> Live:
    """Return a Live view that re-renders the running response text."""
    return Live(Text(""), console=_console, refresh_per_second=8, transient=True)


def stream_update(live: Live, text: str) -> None:
    live.update(Text(text, style="dim"))


def completion(dispatches: int, outcome: str) -> None:
    if outcome == "ok":
        _console.print(
            Text(f"  \u2713 Finished: {dispatches} dispatches", style="bold green")
        )
    else:
        _console.print(
            Text(
                f"  Finished: {dispatches} dispatches, outcome={outcome}",
                style="bold red",
            )
        )


# -- Directives --------------------------------------------------------------


def directive(kind: str | None, parser: str | None) -> None:
    line = Text()
    if kind is None:
        line.append("  [directive] none", style="dim")
    else:
        line.append(f"  [directive] {kind}", style="blue")
        line.append(f" via {escape(str(parser))}", style="dim")
    _console.print(line)


def recursion_limit(limit: int) -> None:
    line = Text()
    line.append("  \u26a0 Recursion limit: ", style="bold yellow")
    line.append(
        f"{limit} continuations reached, returning the last response",
        style="yellow",
    )
    _console.print(line)


def stalled(files: list[str]) -> None:
    line = Text()
    line.append("  \u26a0 No progress: ", style="bold yellow")
    line.append(f"same files requested again: {', '.join(files)}", style="yellow")
    _console.print(line)


# -- Files -------------------------------------------------------------------


def file_opened(name: str, size: int, *, cached: bool = False) -> None:
    line = Text()
    line.append(f"  \u2713 {name}", style="green")
    line.append(f"  {size} chars", style="green")
    if cached:
        line.append("  (cached)", style="dim")
    _console.print(line)


def file_binary(name: str) -> None:
    _console.print(Text(f"  \u25cb {name}  binary, not read", style="dim"))


def file_error(name: str, msg: str) -> None:
    line = Text()
    line.append(f"  \u2717 {name}", style="bold red")
    line.append(f"  {msg}", style="red")
    _console.print(line)


# -- Commands ----------------------------------------------------------------


def command_result(command: str, file_name: str | None, error: str | None) -> None:
    line = Text()
    target = file_name or "?"
    if error is None:
        line.append(f"  \u25b6 {command} {target}", style="bold magenta")
    else:
        line.append(f"  \u2717 {command} {target}", style="bold red")
        line.append(f"  {error}", style="red")
    _console.print(line)


# -- Diagnostics -------------------------------------------------------------


def info(msg: str) -> None:
    _console.print(Text(f"  {msg}", style="dim"))


def context_stats(label: str, tokens: int) -> None:
    _console.print(Text(f"  {label}: ~{tokens} tokens", style="dim"))


def warning(msg: str) -> None:
    line = Text()
    line.append("  \u26a0 Warning: ", style="yellow")
    line.append(msg, style="yellow")
    _console.print(line)


def error(msg: str) -> None:
    line = Text()
    line.append("Error: ", style="bold red")
    line.append(msg, style="red")
    _console.print(line)


def repl_banner() -> None:
    _console.print(Text("Interactive mode. Type /exit or Ctrl-D to quit.", style="dim"))
