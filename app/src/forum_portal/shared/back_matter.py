"""イベント本文末尾のメタデータブロック（back-matter）を扱う。

書式::

    本文...
    ---
    slug: my-session
    capacity: 20
    diet-form: true
    ---

解析できない場合は常にメタデータなし・本文そのままを返す。通常の
イベント説明を壊さないことを優先する。
"""

from __future__ import annotations

import re

from forum_portal.core.models import BackMatter

_MARKER = "---"
_BLANK_LINES_RE = re.compile(r"\n\s*\n")
_EXCESS_NEWLINES_RE = re.compile(r"\n{3,}")
_LEADING_INT_RE = re.compile(r"^[+-]?\d+")


def _normalize(text: str) -> str:
    normalized = text.replace("\r\n", "\n").replace("\r", "\n")
    return _BLANK_LINES_RE.sub("\n", normalized).strip()


def _parse_pairs(lines: list[str]) -> dict[str, str]:
    metadata: dict[str, str] = {}
    for line in lines:
        stripped = line.strip()
        colon = stripped.find(":")
        if colon <= 0:
            continue
        key = stripped[:colon].strip().lower()
        value = stripped[colon + 1 :].strip()
        if key and value:
            metadata[key] = value
    return metadata


def parse_back_matter(text: str) -> BackMatter:
    """末尾の `---` ブロックを切り出して `BackMatter` を返す。"""

    normalized = _normalize(text)
    lines = normalized.split("\n")
    if len(lines) < 3 or lines[-1].strip() != _MARKER:
        return BackMatter(metadata={}, content=text)

    closing = len(lines) - 1
    opening = next(
        (index for index in range(closing - 1, -1, -1) if lines[index].strip() == _MARKER),
        None,
    )
    if opening is None:
        return BackMatter(metadata={}, content=text)

    metadata = _parse_pairs(lines[opening + 1 : closing])
    if not metadata:
        return BackMatter(metadata={}, content=text)

    content = "\n".join(lines[:opening]).strip()
    content = _EXCESS_NEWLINES_RE.sub("\n\n", content).strip()
    return BackMatter(metadata=metadata, content=content)


def parse_capacity(value: str | None) -> int | None:
    """定員を正の整数として解釈する。先頭の数字だけを見る（"25 名" は 25）。"""

    if not value:
        return None
    match = _LEADING_INT_RE.match(value.strip())
    if match is None:
        return None
    capacity = int(match.group(0))
    return capacity if capacity > 0 else None


def parse_flag(value: str | None) -> bool:
    if value is None:
        return False
    return value.strip().lower() == "true" or value.strip() == "1"
