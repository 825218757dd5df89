"""セッションの URL 用スラッグ生成。"""

from __future__ import annotations

import re
import unicodedata

_MAX_TITLE_LENGTH = 50
_HASH_LENGTH = 6
_BASE36_DIGITS = "0123456789abcdefghijklmnopqrstuvwxyz"

_COMBINING_MARKS_RE = re.compile(r"[\u0300-\u036f]")
_UNSAFE_CHARS_RE = re.compile(r"[^a-z0-9\s-]")
_WHITESPACE_RE = re.compile(r"\s+")
_HYPHENS_RE = re.compile(r"-+")
_EDGE_HYPHEN_RE = re.compile(r"^-|-$")


def slugify_title(title: str) -> str:
    """タイトルを小文字・英数字・ハイフンのみに正規化する（最大 50 文字）。"""

    slug = unicodedata.normalize("NFD", title.lower())
    slug = _COMBINING_MARKS_RE.sub("", slug)
    slug = _UNSAFE_CHARS_RE.sub("", slug)
    slug = _WHITESPACE_RE.sub("-", slug)
    slug = _HYPHENS_RE.sub("-", slug)
    slug = _EDGE_HYPHEN_RE.sub("", slug)
    return slug[:_MAX_TITLE_LENGTH]


def rolling_hash(value: str) -> int:
    """UTF-16 コード単位に対する 32bit 符号付きローリングハッシュ（h * 31 + c）。"""

    encoded = value.encode("utf-16-le")
    hash_value = 0
    for offset in range(0, len(encoded), 2):
        code_unit = encoded[offset] | (encoded[offset + 1] << 8)
        hash_value = (hash_value * 31 + code_unit) & 0xFFFFFFFF
    if hash_value >= 0x80000000:
        hash_value -= 0x100000000
    return hash_value


def _to_base36(number: int) -> str:
    if number == 0:
        return "0"
    digits: list[str] = []
    while number:
        number, remainder = divmod(number, 36)
        digits.append(_BASE36_DIGITS[remainder])
    return "".join(reversed(digits))


def short_hash(source_id: str) -> str:
    """ソース ID から常に 6 文字の接尾辞を作る。"""

    return _to_base36(abs(rolling_hash(source_id))).rjust(_HASH_LENGTH, "0")[:_HASH_LENGTH]


def generate_slug(title: str, source_id: str) -> str:
    """`{タイトル}-{ハッシュ}` 形式のスラッグを返す。"""

    title_slug = slugify_title(title)
    suffix = short_hash(source_id)
    if not title_slug:
        return suffix
    return f"{title_slug}-{suffix}"
