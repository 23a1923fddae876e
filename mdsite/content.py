from __future__ import annotations

import posixpath
import re
from typing import Mapping, Sequence

from .models import Document, DocumentParseError, Header

LIST_MARKER_RE = re.compile(r"^(?P<indent>[ \t]*)(?:[-+*]|\d+[.)])\s+")
FENCE_RE = re.compile(r"^(?P<indent>[ \t]*)(`{3,}|~{3,})")
DOUBLE_QUOTE_RE = re.compile(r"^(?P<indent>[ \t]*)>>(?!>)(?P<rest>.*)$")
FRONT_MATTER_FENCE = "---"
DEFAULT_TITLE = "Untitled"
SOURCE_EXTENSIONS = (".md", ".markdown")


def parse_list(value: str) -> list[str]:
    value = value.strip()
    if value.startswith("[") and value.endswith("]"):
        inner = value[1:-1]
        items = [item.strip().strip("'\"") for item in inner.split(",")]
    else:
        items = [item.strip() for item in value.split(",")]
    return [item for item in items if item]


def split_values(value: str) -> list[str]:
    """Comma separated attribute value to distinct, non empty tokens."""
    tokens: list[str] = []
    for item in parse_list(value):
        if item not in tokens:
            tokens.append(item)
    return tokens


def parse_front_matter(lines: Sequence[str]) -> tuple[dict[str, str], list[str]]:
    if not lines or lines[0].lstrip("\ufeff").strip() != FRONT_MATTER_FENCE:
        return {}, list(lines)

    end = None
    for i in range(1, len(lines)):
        if lines[i].strip() == FRONT_MATTER_FENCE:
            end = i
            break
    if end is None:
        raise DocumentParseError("front matter opened on line 1 is never closed")

    meta: dict[str, str] = {}
    for line in lines[1:end]:
        line = line.strip()
        if not line or line.startswith("#") or ":" not in line:
            continue
        key, value = line.split(":", 1)
        key = key.strip()
        value = value.strip()
        if value.startswith("[") and value.endswith("]"):
            value = ",".join(parse_list(value))
        elif len(value) >= 2 and value[0] == value[-1] and value[0] in "'\"":
            value = value[1:-1]
        meta[key] = value
    return meta, list(lines[end + 1 :])


def extract_title(meta: dict[str, str], body: list[str]) -> tuple[str, list[str]]:
    if meta.get("title"):
        return meta["title"], body
    for i, line in enumerate(body):
        stripped = line.strip()
        if stripped.startswith("# "):
            title = stripped[2:].strip() or DEFAULT_TITLE
            return title, body[i + 1 :]
        if stripped:
            break
    return DEFAULT_TITLE, body


def normalize_list_spacing(lines: list[str]) -> str:
    out: list[str] = []
    in_fence = False
    fence_marker = ""
    for line in lines:
        fence_match = FENCE_RE.match(line)
        if fence_match:
            marker = fence_match.group(2)
            if not in_fence:
                in_fence = True
                fence_marker = marker
            elif marker == fence_marker:
                in_fence = False
                fence_marker = ""
            out.append(line)
            continue
        if in_fence:
            out.append(line)
            continue
        quote_match = DOUBLE_QUOTE_RE.match(line)
        if quote_match:
            rest = quote_match.group("rest").lstrip()
            if rest:
                line = f'{quote_match.group("indent")}> {rest}'
            else:
                line = f'{quote_match.group("indent")}>'
        list_match = LIST_MARKER_RE.match(line)
        if list_match:
            if not list_match.group("indent"):
                if out and out[-1].strip() and not LIST_MARKER_RE.match(out[-1]):
                    out.append("")
        out.append(line)
    return "\n".join(out).strip("\n")


def parse_document(lines: Sequence[str]) -> Document:
    """Parse a Markdown source (front matter + body) into a Document."""
    lines = [line.rstrip("\r\n") for line in lines]
    meta, body = parse_front_matter(lines)
    title, body = extract_title(meta, body)
    meta.pop("title", None)
    header = Header(
        title=title,
        attributes=meta,
        subtitle=meta.get("subtitle"),
        author=meta.get("author"),
    )
    return Document(header=header, body=normalize_list_spacing(body))


def strip_source_extension(path: str) -> str:
    for extension in SOURCE_EXTENSIONS:
        if path.endswith(extension):
            return path[: -len(extension)]
    return path


def derive_slug(source: str, attributes: Mapping[str, str]) -> str:
    explicit = (attributes.get("slug") or "").strip()
    if explicit:
        return strip_source_extension(explicit.replace("\\", "/"))
    return posixpath.splitext(source.replace("\\", "/"))[0]
