"""Turn a Files directive into file contents via the registry."""

import asyncio
import logging
from dataclasses import dataclass

from .prompts import CONTINUE_PROMPT
from .registry import FileReference, FileRegistry, RegistryError, find_file, is_binary

logger = logging.getLogger(__name__)

BINARY_PLACEHOLDER = "[binary file {name} ({type}, {size} bytes) not shown]"


@dataclass
class FileResult:
    file_name: str
    success: bool
    content: str | None = None
    error: str | None = None
    file_ref: FileReference | None = None
    cached: bool = False
    binary: bool = False


class FileCache:
    """Per-session file contents, keyed by the file's registry path."""

    def __init__(self):
        self._entries: dict[str, str] = {}

    def __contains__(self, path: str) -> bool:
        return path in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, path: str) -> str | None:
        return self._entries.get(path)

    def put(self, path: str, content: str) -> None:
        self._entries[path] = content

    def invalidate(self, path: str) -> None:
        self._entries.pop(path, None)

    def clear(self) -> None:
        self._entries.clear()


async def _resolve_one(
    name: str, refs: list[FileReference], registry: FileRegistry, cache: FileCache
) -> FileResult:
    ref = find_file(refs, name)
    if ref is None:
        logger.debug("requested file %r is not in the registry", name)
        return FileResult(file_name=name, success=False, error="File not found")

    if is_binary(ref.name):
        content = BINARY_PLACEHOLDER.format(
            name=ref.name, type=ref.type, size=ref.size
        )
        return FileResult(
            file_name=name, success=True, content=content, file_ref=ref, binary=True
        )

    cached = cache.get(ref.original_path)
    if cached is not None:
        return FileResult(
            file_name=name, success=True, content=cached, file_ref=ref, cached=True
        )

    try:
        content = await registry.read(ref)
    except RegistryError as e:
        logger.debug("reading %s failed: %s", ref.original_path, e)
        return FileResult(file_name=name, success=False, error=str(e), file_ref=ref)
    cache.put(ref.original_path, content)
    return FileResult(file_name=name, success=True, content=content, file_ref=ref)


async def resolve_files(
    names: list[str], registry: FileRegistry, cache: FileCache
) -> list[FileResult]:
    """Resolve requested names to contents, one result per distinct name.

    Results keep request order. Failures never raise; they are reported
    per file so the model can react to them.
    """
    unique = list(dict.fromkeys(names))
    try:
        refs = await registry.list()
    except RegistryError as e:
        return [FileResult(file_name=n, success=False, error=str(e)) for n in unique]
    return list(
        await asyncio.gather(*(_resolve_one(n, refs, registry, cache) for n in unique))
    )


def format_file_results(results: list[FileResult]) -> str:
    """Build the user message that carries file contents back to the model."""
    parts = ["Here are the contents of the requested files:\n\n"]
    for r in results:
        if r.success:
            fence = r.file_ref.type if r.file_ref is not None else ""
            parts.append(f"===== BEGIN FILE: {r.file_name} =====\n\n")
            parts.append(f"```{fence}\n{r.content}\n```\n\n")
            parts.append(f"===== END FILE: {r.file_name} =====\n\n")
        else:
            parts.append(f"Error opening file {r.file_name}: {r.error}\n\n")
    return f"{CONTINUE_PROMPT}\n\n{''.join(parts)}"
