"""File-mutation commands embedded in model responses.

A response that neither requests files nor answers may carry commands as
JSON objects, usually in ```json fences:

    {"command": "Create", "fileName": "a.txt", "content": "...", "description": "..."}
    {"command": "Modify", "fileName": "a.txt", "oldContent": "X", "newContent": "Y"}
    {"command": "Delete", "fileName": "a.txt"}
"""

import json
import logging
from dataclasses import dataclass

from .directives import iter_json_objects
from .registry import FileReference, FileRegistry, RegistryError, find_file

logger = logging.getLogger(__name__)


class CommandValidationError(ValueError):
    """A command object is missing fields or names an unknown command."""

    def __init__(self, message: str, command: str = "unknown", file_name: str | None = None):
        super().__init__(message)
        self.command = command
        self.file_name = file_name


@dataclass(frozen=True)
class CreateCommand:
    file_name: str
    content: str
    description: str | None = None

    name = "Create"


@dataclass(frozen=True)
class ModifyCommand:
    file_name: str
    new_content: str
    old_content: str | None = None

    name = "Modify"


@dataclass(frozen=True)
class DeleteCommand:
    file_name: str

    name = "Delete"


Command = CreateCommand | ModifyCommand | DeleteCommand


@dataclass
class CommandResult:
    command: str
    file_name: str | None
    success: bool
    error: str | None = None
    file_ref: FileReference | None = None

    def to_dict(self) -> dict:
        d = {
            "command": self.command,
            "file_name": self.file_name,
            "success": self.success,
        }
        if self.error is not None:
            d["error"] = self.error
        if self.file_ref is not None:
            d["file_ref"] = self.file_ref.to_dict()
        return d


def _require_str(obj: dict, key: str, command: str, file_name, *, allow_empty=False):
    value = obj.get(key)
    if not isinstance(value, str) or (not allow_empty and not value.strip()):
        raise CommandValidationError(
            f"{command} requires a string {key!r}", command, file_name
        )
    return value


def build_command(obj: dict) -> Command:
    """Validate one decoded command object."""
    raw = obj.get("command")
    kind = raw.strip().capitalize() if isinstance(raw, str) else None
    file_name = obj.get("fileName") if isinstance(obj.get("fileName"), str) else None

    if kind not in ("Create", "Modify", "Delete"):
        raise CommandValidationError(f"unknown command {raw!r}", "unknown", file_name)

    file_name = _require_str(obj, "fileName", kind, file_name)
    if kind == "Create":
        content = _require_str(obj, "content", kind, file_name, allow_empty=True)
        description = obj.get("description")
        if not isinstance(description, str) or not description.strip():
            description = None
        return CreateCommand(file_name, content, description)
    if kind == "Modify":
        new_content = _require_str(obj, "newContent", kind, file_name, allow_empty=True)
        old_content = obj.get("oldContent")
        if old_content is not None and not isinstance(old_content, str):
            raise CommandValidationError(
                "Modify 'oldContent' must be a string", kind, file_name
            )
        return ModifyCommand(file_name, new_content, old_content or None)
    return DeleteCommand(file_name)


def parse_commands(text: str) -> list[Command | CommandValidationError]:
    """Find command objects in text, in order.

    Objects without a "command" key are not commands and are skipped.
    Invalid commands come back as CommandValidationError instances.
    """
    found: list[Command | CommandValidationError] = []
    for _start, _end, raw in iter_json_objects(text):
        try:
            obj = json.loads(raw)
        except json.JSONDecodeError:
            continue
        if not isinstance(obj, dict) or "command" not in obj:
            continue
        try:
            found.append(build_command(obj))
        except CommandValidationError as e:
            logger.debug("invalid command %s: %s", raw[:200], e)
            found.append(e)
    return found


async def apply_command(cmd: Command, registry: FileRegistry) -> CommandResult:
    """Execute one command against the registry. Never raises RegistryError."""
    try:
        if isinstance(cmd, CreateCommand):
            ref = await registry.write(cmd.file_name, cmd.content)
            if cmd.description:
                ref = await registry.update_description(
                    ref.original_path, cmd.description
                )
            return CommandResult(cmd.name, cmd.file_name, True, file_ref=ref)

        ref = find_file(await registry.list(), cmd.file_name)
        if ref is None:
            return CommandResult(
                cmd.name, cmd.file_name, False, f"file not found: {cmd.file_name}"
            )

        if isinstance(cmd, ModifyCommand):
            if cmd.old_content:
                current = await registry.read(ref)
                if cmd.old_content not in current:
                    return CommandResult(
                        cmd.name,
                        cmd.file_name,
                        False,
                        f"oldContent not found in {cmd.file_name}",
                        ref,
                    )
                updated = current.replace(cmd.old_content, cmd.new_content, 1)
            else:
                updated = cmd.new_content
            ref = await registry.write(ref.original_path, updated)
            return CommandResult(cmd.name, cmd.file_name, True, file_ref=ref)

        await registry.delete(ref.original_path)
        return CommandResult(cmd.name, cmd.file_name, True, file_ref=ref)
    except RegistryError as e:
        return CommandResult(cmd.name, cmd.file_name, False, str(e))


async def interpret_commands(text: str, registry: FileRegistry) -> list[CommandResult]:
    """Parse and apply every command in text, sequentially and in order."""
    results = []
    for item in parse_commands(text):
        if isinstance(item, CommandValidationError):
            results.append(
                CommandResult(item.command, item.file_name, False, str(item))
            )
            continue
        results.append(await apply_command(item, registry))
    return results
