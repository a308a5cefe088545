"""Tests for file registries, name lookup and placeholder descriptions."""

import asyncio
import logging
from pathlib import Path

import pytest

from fileloop.registry import (
    DirectoryRegistry,
    FileReference,
    InMemoryRegistry,
    RegistryError,
    find_file,
    is_binary,
    placeholder_description,
    safe_resolve,
)


def _ref(path, **kw):
    return FileReference(
        id=kw.pop("id", path), name=Path(path).name, original_path=path, type="", **kw
    )


# ---------------------------------------------------------------------------
# Lookup
# ---------------------------------------------------------------------------


class TestFindFile:
    def test_exact_path(self):
        refs = [_ref("src/readme.md"), _ref("readme.md")]
        assert find_file(refs, "readme.md").original_path == "readme.md"

    def test_basename(self):
        refs = [_ref("docs/guide.md")]
        assert find_file(refs, "guide.md").original_path == "docs/guide.md"

    def test_basename_tie_goes_to_first(self):
        refs = [_ref("a/util.py"), _ref("b/util.py")]
        assert find_file(refs, "util.py").original_path == "a/util.py"

    def test_suffix(self):
        refs = [_ref("pkg/core/loop.py")]
        assert find_file(refs, "core/loop.py").original_path == "pkg/core/loop.py"

    def test_suffix_needs_path_boundary(self):
        refs = [_ref("pkg/myloop.py")]
        assert find_file(refs, "loop.py") is None

    def test_by_id(self):
        refs = [_ref("x.txt", id="abc123")]
        assert find_file(refs, "abc123").original_path == "x.txt"

    def test_normalizes_backslashes_and_dot_slash(self):
        refs = [_ref("src/app.js")]
        assert find_file(refs, "./src\\app.js").original_path == "src/app.js"

    def test_missing(self):
        assert find_file([_ref("a.txt")], "b.txt") is None
        assert find_file([_ref("a.txt")], "  ") is None


class TestClassification:
    @pytest.mark.parametrize("name", ["logo.PNG", "a/b/font.woff2", "lib.so", "x.pdf"])
    def test_binary(self, name):
        assert is_binary(name)

    @pytest.mark.parametrize("name", ["main.py", "README", "data.json"])
    def test_text(self, name):
        assert not is_binary(name)

    def test_placeholders(self):
        assert placeholder_description("app.tsx") == "JavaScript/TypeScript file: app.tsx"
        assert placeholder_description("run.py") == "Python script: run.py"
        assert placeholder_description("photo.jpg") == "Image file: photo.jpg"
        assert placeholder_description("Makefile") == "File: Makefile"


# ---------------------------------------------------------------------------
# InMemoryRegistry
# ---------------------------------------------------------------------------


class TestInMemoryRegistry:
    def test_list_and_read(self):
        reg = InMemoryRegistry({"a.txt": "hello", "./dir/b.md": "# b"})
        refs = asyncio.run(reg.list())
        assert [r.original_path for r in refs] == ["a.txt", "dir/b.md"]
        assert refs[1].name == "b.md"
        assert refs[1].type == "md"
        assert refs[0].size == 5
        assert asyncio.run(reg.read(refs[0])) == "hello"

    def test_write_new_file_is_added(self):
        reg = InMemoryRegistry()
        ref = asyncio.run(reg.write("new.txt", "abc"))
        assert ref.status == "added"
        assert ref.size == 3

    def test_write_existing_is_modified(self):
        reg = InMemoryRegistry({"a.txt": "x"})
        ref = asyncio.run(reg.write("a.txt", "longer"))
        assert ref.status == "modified"
        assert ref.size == 6
        assert asyncio.run(reg.read(ref)) == "longer"

    def test_size_counts_utf8_bytes(self):
        reg = InMemoryRegistry({"caf.txt": "café"})
        assert asyncio.run(reg.list())[0].size == 5
        ref = asyncio.run(reg.write("caf.txt", "naïve café"))
        assert ref.size == 12
        assert asyncio.run(reg.write("new.txt", "€")).size == 3

    def test_delete(self):
        reg = InMemoryRegistry({"a.txt": "x"})
        asyncio.run(reg.delete("a.txt"))
        assert asyncio.run(reg.list()) == []
        with pytest.raises(RegistryError, match="File not found"):
            asyncio.run(reg.delete("a.txt"))

    def test_update_description(self):
        reg = InMemoryRegistry({"a.txt": "x"})
        ref = asyncio.run(reg.update_description("a.txt", "a file"))
        assert ref.description == "a file"
        with pytest.raises(RegistryError):
            asyncio.run(reg.update_description("zzz.txt", "nope"))

    def test_to_dict(self):
        reg = InMemoryRegistry({"a.txt": "x"})
        d = asyncio.run(reg.list())[0].to_dict()
        assert d["name"] == "a.txt"
        assert d["status"] == "registered"
        assert set(d) == {
            "id", "name", "original_path", "type", "size", "description", "status"
        }  # fmt: skip


# ---------------------------------------------------------------------------
# DirectoryRegistry
# ---------------------------------------------------------------------------


@pytest.fixture
def project(tmp_path):
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "main.py").write_text("print('hi')\n")
    (tmp_path / "readme.md").write_text("# Project\n")
    (tmp_path / ".git").mkdir()
    (tmp_path / ".git" / "HEAD").write_text("ref: main\n")
    (tmp_path / ".fileloop").mkdir()
    (tmp_path / ".fileloop" / "HISTORY.md").write_text("old\n")
    return tmp_path


class TestDirectoryRegistry:
    def test_scan_prunes_internal_dirs(self, project):
        reg = DirectoryRegistry(str(project))
        paths = [r.original_path for r in asyncio.run(reg.list())]
        assert paths == ["readme.md", "src/main.py"]

    def test_read(self, project):
        reg = DirectoryRegistry(str(project))
        ref = find_file(asyncio.run(reg.list()), "main.py")
        assert asyncio.run(reg.read(ref)) == "print('hi')\n"

    def test_write_creates_parents_and_registers(self, project):
        reg = DirectoryRegistry(str(project))
        ref = asyncio.run(reg.write("docs/new/guide.md", "guide"))
        assert (project / "docs" / "new" / "guide.md").read_text() == "guide"
        assert ref.status == "added"
        assert ref.original_path == "docs/new/guide.md"
        assert find_file(asyncio.run(reg.list()), "guide.md") is ref

    def test_write_existing_marks_modified(self, project):
        reg = DirectoryRegistry(str(project))
        ref = asyncio.run(reg.write("readme.md", "# New\n"))
        assert ref.status == "modified"
        assert ref.size == 6

    def test_path_escape_rejected(self, project):
        reg = DirectoryRegistry(str(project))
        with pytest.raises(RegistryError, match="outside base directory"):
            asyncio.run(reg.write("../escape.txt", "x"))
        assert not (project.parent / "escape.txt").exists()

    def test_delete_removes_entry_and_file(self, project):
        reg = DirectoryRegistry(str(project))
        asyncio.run(reg.delete("readme.md"))
        assert not (project / "readme.md").exists()
        assert find_file(asyncio.run(reg.list()), "readme.md") is None

    def test_delete_unknown(self, project):
        reg = DirectoryRegistry(str(project))
        with pytest.raises(RegistryError, match="File not found"):
            asyncio.run(reg.delete("missing.txt"))

    def test_delete_unlink_failure_is_logged(self, project, monkeypatch, caplog):
        reg = DirectoryRegistry(str(project))
        asyncio.run(reg.list())

        def failing_unlink(self, *args, **kwargs):
            raise PermissionError("read-only")

        monkeypatch.setattr(Path, "unlink", failing_unlink)
        with caplog.at_level(logging.WARNING, logger="fileloop.registry"):
            asyncio.run(reg.delete("readme.md"))
        assert find_file(asyncio.run(reg.list()), "readme.md") is None
        assert "could not unlink" in caplog.text

    def test_read_vanished_file(self, project):
        reg = DirectoryRegistry(str(project))
        ref = find_file(asyncio.run(reg.list()), "readme.md")
        (project / "readme.md").unlink()
        with pytest.raises(RegistryError, match="File not found"):
            asyncio.run(reg.read(ref))


class TestSafeResolve:
    def test_inside(self, tmp_path):
        assert safe_resolve("a/b.txt", str(tmp_path)) == (tmp_path / "a" / "b.txt").resolve()

    def test_symlink_escape(self, tmp_path):
        outside = tmp_path / "outside"
        outside.mkdir()
        base = tmp_path / "base"
        base.mkdir()
        (base / "link").symlink_to(outside)
        with pytest.raises(RegistryError):
            safe_resolve("link/x.txt", str(base))

    def test_base_itself_rejected(self, tmp_path):
        with pytest.raises(RegistryError):
            safe_resolve(".", str(tmp_path))
