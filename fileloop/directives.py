"""Directive extraction from model output.

A response may end with a JSON object that either asks for files or
submits the final answer:

    {"output": "Files", "files": ["a.py", "docs/b.md"]}
    {"output": "Answer", "content": "..."}

Extraction runs a prioritized chain of parsers and returns the first
directive found:

  1. strict:    JSON objects at the very end of the text, exact keys/values
  2. lenient:   JSON objects anywhere, ``type`` key allowed, any case
  3. heuristic: natural-language requests such as ``open file: x.py``

Within the JSON parsers candidates are tried from the end of the text
backwards, so the last valid object wins whatever its shape.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FilesDirective:
    files: list[str]

    kind = "files"


@dataclass(frozen=True)
class AnswerDirective:
    content: str

    kind = "answer"


Directive = FilesDirective | AnswerDirective


# ---------------------------------------------------------------------------
# JSON object scanning
# ---------------------------------------------------------------------------


def iter_json_objects(text: str):
    """Yield (start, end, raw) for each balanced top-level {...} block.

    Braces inside JSON strings are ignored. Unbalanced openings are skipped.
    """
    i = 0
    n = len(text)
    while i < n:
        if text[i] != "{":
            i += 1
            continue
        depth = 0
        in_string = False
        escaped = False
        end = None
        for j in range(i, n):
            c = text[j]
            if in_string:
                if escaped:
                    escaped = False
                elif c == "\\":
                    escaped = True
                elif c == '"':
                    in_string = False
                continue
            if c == '"':
                in_string = True
            elif c == "{":
                depth += 1
            elif c == "}":
                depth -= 1
                if depth == 0:
                    end = j + 1
                    break
        if end is None:
            i += 1
            continue
        yield i, end, text[i:end]
        i = end


_TRAILER_RE = re.compile(r"^\s*(?:```\s*)?$")


def _load(raw: str) -> dict | None:
    try:
        obj = json.loads(raw)
    except json.JSONDecodeError as e:
        logger.debug("JSON candidate rejected: %s", e)
        return None
    return obj if isinstance(obj, dict) else None


def _validate(obj: dict, *, lenient: bool = False) -> Directive | None:
    if lenient:
        tag = obj.get("output", obj.get("type"))
        tag = tag.lower() if isinstance(tag, str) else None
        files_tag, answer_tag = "files", "answer"
    else:
        tag = obj.get("output")
        files_tag, answer_tag = "Files", "Answer"

    if tag == files_tag:
        files = obj.get("files")
        if not isinstance(files, list) or not files:
            logger.debug("Files directive rejected: missing or empty 'files'")
            return None
        if not all(isinstance(f, str) and f.strip() for f in files):
            logger.debug("Files directive rejected: non-string entry in 'files'")
            return None
        return FilesDirective(files=list(files))
    if tag == answer_tag:
        content = obj.get("content")
        if not isinstance(content, str) or not content.strip():
            logger.debug("Answer directive rejected: missing or empty 'content'")
            return None
        return AnswerDirective(content=content)
    return None


# ---------------------------------------------------------------------------
# Parsers
# ---------------------------------------------------------------------------


def parse_strict(text: str) -> Directive | None:
    """Only objects followed by nothing but whitespace or a closing fence."""
    candidates = [
        raw
        for _start, end, raw in iter_json_objects(text)
        if _TRAILER_RE.match(text[end:])
    ]
    for raw in reversed(candidates):
        obj = _load(raw)
        if obj is None:
            continue
        directive = _validate(obj)
        if directive is not None:
            return directive
    return None


def parse_lenient(text: str) -> Directive | None:
    for _start, _end, raw in reversed(list(iter_json_objects(text))):
        obj = _load(raw)
        if obj is None:
            continue
        directive = _validate(obj, lenient=True)
        if directive is not None:
            return directive
    return None


_OPEN_RE = re.compile(
    r"\bopen\s+(?:the\s+)?(?:file:?\s+)?[\"'`]?([^\s\"'`<>]+\.[A-Za-z0-9]+)",
    re.IGNORECASE,
)
_LOOSE_RE = re.compile(
    r"\b(?:check|look\s+at|examine|read|view)\s+[\"'`]?([A-Za-z0-9_\-./]+\.[A-Za-z0-9]+)",
    re.IGNORECASE,
)


def _prose(text: str) -> str:
    """The text with every balanced JSON object cut out."""
    parts = []
    pos = 0
    for start, end, _raw in iter_json_objects(text):
        parts.append(text[pos:start])
        pos = end
    parts.append(text[pos:])
    return " ".join(parts)


def parse_heuristic(text: str) -> Directive | None:
    """Legacy natural-language file requests, de-duplicated in order.

    Only prose is scanned; strings inside JSON objects (command payloads
    in particular) never count as requests.
    """
    text = _prose(text)
    names = [m.group(1) for m in _OPEN_RE.finditer(text)]
    if not names:
        names = [m.group(1) for m in _LOOSE_RE.finditer(text)]
    unique = list(dict.fromkeys(names))
    if not unique:
        return None
    return FilesDirective(files=unique)


PARSERS = (
    ("strict", parse_strict),
    ("lenient", parse_lenient),
    ("heuristic", parse_heuristic),
)


def extract(text: str) -> tuple[Directive | None, str | None]:
    """Run the parser chain. Returns (directive, parser_name)."""
    if not text:
        return None, None
    for name, parser in PARSERS:
        directive = parser(text)
        if directive is not None:
            logger.debug("%s directive matched by %s parser", directive.kind, name)
            return directive, name
    logger.debug("no directive found")
    return None, None


def extract_directive(text: str) -> Directive | None:
    return extract(text)[0]
