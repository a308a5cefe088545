"""Error taxonomy and JSON run reports."""

import json
from datetime import datetime, timezone


class AgentError(Exception):
    """Raised by the loop or setup helpers for reportable runtime failures."""


class ConfigError(AgentError):
    """Raised for invalid configuration (missing model, bad API key, etc.)."""


class TransportError(AgentError):
    """The model backend was unreachable, rejected the request, or failed mid-stream."""


class ReportCollector:
    """Accumulates events during a run for JSON report output."""

    def __init__(self):
        self.events: list[dict] = []
        self.file_stats = {"succeeded": 0, "failed": 0, "cached": 0, "binary": 0}
        self.command_stats: dict[str, dict[str, int]] = {}
        self.directives: dict[str, int] = {}
        self.dispatches = 0
        self.continuations = 0
        self.duplicates = 0
        self.recursion_limit_hits = 0
        self.total_llm_time = 0.0
        self.max_depth_seen = 0

    def record_dispatch(
        self,
        depth: int,
        duration: float,
        token_est: int,
        *,
        streamed: bool = False,
        error: str | None = None,
    ):
        self.dispatches += 1
        self.total_llm_time += duration
        if depth > 0:
            self.continuations += 1
        if depth > self.max_depth_seen:
            self.max_depth_seen = depth
        event = {
            "depth": depth,
            "type": "dispatch",
            "duration_s": round(duration, 3),
            "prompt_tokens_est": token_est,
            "streamed": streamed,
        }
        if error is not None:
            event["error"] = error
        self.events.append(event)

    def record_directive(self, depth: int, kind: str | None, parser: str | None):
        key = kind or "none"
        self.directives[key] = self.directives.get(key, 0) + 1
        self.events.append(
            {"depth": depth, "type": "directive", "kind": key, "parser": parser}
        )

    def record_file_request(
        self,
        depth: int,
        file_name: str,
        succeeded: bool,
        *,
        cached: bool = False,
        binary: bool = False,
        error: str | None = None,
    ):
        if succeeded:
            self.file_stats["succeeded"] += 1
        else:
            self.file_stats["failed"] += 1
        if cached:
            self.file_stats["cached"] += 1
        if binary:
            self.file_stats["binary"] += 1
        event: dict = {
            "depth": depth,
            "type": "file_request",
            "file_name": file_name,
            "succeeded": succeeded,
            "cached": cached,
            "binary": binary,
        }
        if error is not None:
            event["error"] = error
        self.events.append(event)

    def record_command(
        self, command: str, file_name: str | None, succeeded: bool, error: str | None
    ):
        stats = self.command_stats.setdefault(command, {"succeeded": 0, "failed": 0})
        if succeeded:
            stats["succeeded"] += 1
        else:
            stats["failed"] += 1
        event: dict = {
            "type": "command",
            "command": command,
            "file_name": file_name,
            "succeeded": succeeded,
        }
        if error is not None:
            event["error"] = error
        self.events.append(event)

    def record_recursion_limit(self, depth: int, limit: int):
        self.recursion_limit_hits += 1
        self.events.append({"depth": depth, "type": "recursion_limit", "limit": limit})

    def record_duplicate(self):
        self.duplicates += 1
        self.events.append({"type": "duplicate"})

    def build_report(
        self,
        *,
        task: str,
        model: str,
        provider: str,
        settings: dict,
        outcome: str,
        answer: str | None,
        exit_code: int,
        error_message: str | None = None,
    ) -> dict:
        commands_succeeded = sum(s["succeeded"] for s in self.command_stats.values())
        commands_failed = sum(s["failed"] for s in self.command_stats.values())

        result: dict = {
            "outcome": outcome,
            "answer": answer,
            "exit_code": exit_code,
        }
        if error_message is not None:
            result["error_message"] = error_message

        return {
            "version": 1,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "task": task,
            "model": model,
            "provider": provider,
            "settings": settings,
            "result": result,
            "stats": {
                "dispatches": self.dispatches,
                "continuations": self.continuations,
                "max_depth": self.max_depth_seen,
                "total_llm_time_s": round(self.total_llm_time, 3),
                "files": dict(self.file_stats),
                "directives": dict(self.directives),
                "commands_total": commands_succeeded + commands_failed,
                "commands_succeeded": commands_succeeded,
                "commands_failed": commands_failed,
                "commands_by_type": dict(self.command_stats),
                "duplicates": self.duplicates,
                "recursion_limit_hits": self.recursion_limit_hits,
            },
            "timeline": self.events,
        }

    def write(self, path: str):
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self._last_report, f, indent=2)
            f.write("\n")

    def finalize(self, **kwargs) -> dict:
        """Build the report and keep it for a later write()."""
        self._last_report = self.build_report(**kwargs)
        return self._last_report
