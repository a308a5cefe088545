"""File registry: the store of known project files the loop reads and edits.

The loop never touches the filesystem itself; every read, write and
delete goes through a FileRegistry.
"""

import asyncio
import logging
import os
import uuid
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from pathlib import Path, PurePosixPath

logger = logging.getLogger(__name__)

STATUSES = ("registered", "added", "modified")

BINARY_EXTENSIONS = frozenset(
    {
        # images
        "jpg", "jpeg", "png", "gif", "bmp", "ico", "svg", "webp",
        # audio / video
        "mp3", "wav", "ogg", "mp4", "avi", "mov", "webm",
        # documents
        "pdf", "doc", "docx", "xls", "xlsx", "ppt", "pptx",
        # archives
        "zip", "rar", "7z", "tar", "gz",
        # fonts
        "ttf", "otf", "woff", "woff2",
        # executables
        "exe", "dll", "so", "dylib",
    }
)  # fmt: skip

SKIP_DIRS = frozenset({".git", ".fileloop", "__pycache__", "node_modules"})


class RegistryError(Exception):
    """A registry operation failed (missing file, I/O error, path escape)."""


@dataclass
class FileReference:
    id: str
    name: str
    original_path: str
    type: str
    size: int = 0
    description: str = ""
    status: str = "registered"

    def to_dict(self) -> dict:
        return asdict(self)


def file_type(name: str) -> str:
    """Lower-cased extension without the dot, or "" when there is none."""
    suffix = PurePosixPath(name).suffix
    return suffix[1:].lower() if suffix else ""


def is_binary(name: str) -> bool:
    return file_type(name) in BINARY_EXTENSIONS


_PLACEHOLDERS = [
    ({"js", "jsx", "ts", "tsx"}, "JavaScript/TypeScript file"),
    ({"css", "scss", "sass", "less"}, "Stylesheet file"),
    ({"html", "htm"}, "HTML file"),
    ({"json"}, "JSON data file"),
    ({"md", "markdown"}, "Markdown document"),
    ({"py"}, "Python script"),
    ({"cs"}, "C# source file"),
    ({"java"}, "Java source file"),
    ({"txt"}, "Text file"),
    ({"jpg", "jpeg", "png", "gif", "bmp", "ico", "svg", "webp"}, "Image file"),
    ({"mp3", "wav", "ogg"}, "Audio file"),
    ({"mp4", "avi", "mov", "webm"}, "Video file"),
    ({"pdf", "doc", "docx", "xls", "xlsx", "ppt", "pptx"}, "Document file"),
]


def placeholder_description(name: str) -> str:
    """Describe a file from its extension alone."""
    ext = file_type(name)
    for extensions, label in _PLACEHOLDERS:
        if ext in extensions:
            return f"{label}: {name}"
    return f"File: {name}"


def normalize_name(name: str) -> str:
    name = name.strip().replace("\\", "/")
    while name.startswith("./"):
        name = name[2:]
    return name


def find_file(refs: list[FileReference], name: str) -> FileReference | None:
    """Look up a requested name against the registry listing.

    Tried in order: exact id or path, exact basename, then path suffix.
    Within each rule the first entry in registry order wins.
    """
    wanted = normalize_name(name)
    if not wanted:
        return None
    for ref in refs:
        if ref.id == wanted or ref.original_path == wanted:
            return ref
    for ref in refs:
        if ref.name == wanted:
            return ref
    suffix = "/" + wanted
    for ref in refs:
        if ref.original_path.endswith(suffix):
            return ref
    return None


def safe_resolve(file_path: str, base_dir: str) -> Path:
    """Resolve a file path, ensuring it stays within base_dir.

    Resolves symlinks for both the base directory and the target path.

    Raises:
        RegistryError: If the resolved path escapes the base directory.
    """
    base = Path(base_dir).resolve()

    if Path(file_path).is_absolute():
        resolved = Path(file_path).resolve()
    else:
        resolved = (base / file_path).resolve()

    if resolved == base or not resolved.is_relative_to(base):
        raise RegistryError(
            f"Path {file_path!r} resolves to {resolved}, "
            f"which is outside base directory {base}"
        )
    return resolved


class FileRegistry(ABC):
    """Abstract store of project files. All operations are coroutines."""

    @abstractmethod
    async def list(self) -> list[FileReference]: ...

    @abstractmethod
    async def read(self, ref: FileReference) -> str: ...

    @abstractmethod
    async def write(self, path: str, content: str) -> FileReference:
        """Create or overwrite a file. Returns the updated reference."""

    @abstractmethod
    async def delete(self, path: str) -> None: ...

    @abstractmethod
    async def update_description(self, path: str, text: str) -> FileReference: ...


class InMemoryRegistry(FileRegistry):
    """Dict-backed registry, used for library embedding and tests."""

    def __init__(self, files: dict[str, str] | None = None):
        self._refs: dict[str, FileReference] = {}
        self._contents: dict[str, str] = {}
        for path, content in (files or {}).items():
            path = normalize_name(path)
            self._refs[path] = _new_ref(path, _byte_size(content))
            self._contents[path] = content

    async def list(self) -> list[FileReference]:
        return list(self._refs.values())

    async def read(self, ref: FileReference) -> str:
        try:
            return self._contents[ref.original_path]
        except KeyError:
            raise RegistryError(f"File not found: {ref.original_path}") from None

    async def write(self, path: str, content: str) -> FileReference:
        path = normalize_name(path)
        if not path:
            raise RegistryError("empty file name")
        ref = self._refs.get(path)
        if ref is None:
            ref = _new_ref(path, _byte_size(content), status="added")
            self._refs[path] = ref
        else:
            ref.size = _byte_size(content)
            if ref.status == "registered":
                ref.status = "modified"
        self._contents[path] = content
        return ref

    async def delete(self, path: str) -> None:
        path = normalize_name(path)
        if path not in self._refs:
            raise RegistryError(f"File not found: {path}")
        del self._refs[path]
        self._contents.pop(path, None)

    async def update_description(self, path: str, text: str) -> FileReference:
        path = normalize_name(path)
        ref = self._refs.get(path)
        if ref is None:
            raise RegistryError(f"File not found: {path}")
        ref.description = text
        return ref


class DirectoryRegistry(FileRegistry):
    """Registry over a project directory on disk.

    The directory is scanned once on first use; writes and deletes keep the
    in-memory listing in step with the disk. Paths are relative to base_dir
    and may not escape it.
    """

    def __init__(self, base_dir: str):
        self.base_dir = str(Path(base_dir).resolve())
        self._refs: dict[str, FileReference] | None = None

    def _scan(self) -> dict[str, FileReference]:
        refs: dict[str, FileReference] = {}
        for root, dirs, files in os.walk(self.base_dir):
            dirs[:] = sorted(d for d in dirs if d not in SKIP_DIRS)
            for fname in sorted(files):
                full = Path(root) / fname
                rel = full.relative_to(self.base_dir).as_posix()
                try:
                    size = full.stat().st_size
                except OSError as e:
                    logger.warning("Skipping %s: %s", rel, e)
                    continue
                refs[rel] = _new_ref(rel, size)
        logger.debug("Scanned %d files under %s", len(refs), self.base_dir)
        return refs

    async def _listing(self) -> dict[str, FileReference]:
        if self._refs is None:
            self._refs = await asyncio.to_thread(self._scan)
        return self._refs

    def _relative(self, path: str) -> tuple[str, Path]:
        resolved = safe_resolve(normalize_name(path), self.base_dir)
        return resolved.relative_to(self.base_dir).as_posix(), resolved

    async def list(self) -> list[FileReference]:
        return list((await self._listing()).values())

    async def read(self, ref: FileReference) -> str:
        _rel, resolved = self._relative(ref.original_path)
        try:
            return await asyncio.to_thread(
                resolved.read_text, encoding="utf-8", errors="replace"
            )
        except FileNotFoundError:
            raise RegistryError(f"File not found: {ref.original_path}") from None
        except OSError as e:
            raise RegistryError(f"{ref.original_path}: {e}") from e

    async def write(self, path: str, content: str) -> FileReference:
        rel, resolved = self._relative(path)
        listing = await self._listing()

        def _write():
            resolved.parent.mkdir(parents=True, exist_ok=True)
            resolved.write_text(content, encoding="utf-8")

        try:
            await asyncio.to_thread(_write)
        except OSError as e:
            raise RegistryError(f"{rel}: {e}") from e

        size = _byte_size(content)
        ref = listing.get(rel)
        if ref is None:
            ref = _new_ref(rel, size, status="added")
            listing[rel] = ref
        else:
            ref.size = size
            if ref.status == "registered":
                ref.status = "modified"
        return ref

    async def delete(self, path: str) -> None:
        rel, resolved = self._relative(path)
        listing = await self._listing()
        if rel not in listing:
            raise RegistryError(f"File not found: {rel}")
        del listing[rel]
        try:
            await asyncio.to_thread(resolved.unlink)
        except OSError as e:
            logger.warning("Removed %s from registry but could not unlink: %s", rel, e)

    async def update_description(self, path: str, text: str) -> FileReference:
        rel, _resolved = self._relative(path)
        ref = (await self._listing()).get(rel)
        if ref is None:
            raise RegistryError(f"File not found: {rel}")
        ref.description = text
        return ref


def _byte_size(content: str) -> int:
    return len(content.encode("utf-8"))


def _new_ref(path: str, size: int, status: str = "registered") -> FileReference:
    return FileReference(
        id=uuid.uuid4().hex[:12],
        name=PurePosixPath(path).name,
        original_path=path,
        type=file_type(path),
        size=size,
        status=status,
    )
