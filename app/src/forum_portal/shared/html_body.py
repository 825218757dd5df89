"""Outlook のイベント本文（HTML）の無害化と整形。"""

from __future__ import annotations

import re

import nh3
from bs4 import BeautifulSoup, Comment, NavigableString, Tag

from forum_portal.core.models import BackMatter

_REMOVED_TAGS = ["style", "script", "head", "meta", "link", "title", "iframe", "object", "embed"]
_DROPPED_CONTENT_TAGS = {"script", "style", "head", "title", "iframe", "object", "embed", "noscript", "template"}
_URL_SCHEMES = {"http", "https", "mailto", "tel"}
_TEXT_BLOCK_TAGS = ["p", "div", "li", "tr", "h1", "h2", "h3", "h4", "h5", "h6", "blockquote"]
_TRIMMABLE_TAGS = {"p", "div", "span"}
_CONTENT_TAGS = ["img", "table", "hr", "video", "audio"]
_MARKER = "---"
_EXCESS_NEWLINES_RE = re.compile(r"\n{3,}")


def _clean(text: str) -> str:
    return text.replace("\xa0", " ").strip()


def _parse(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, "html.parser")


def sanitize_html(html: str) -> str:
    """許可リスト方式で無害化し、div を段落として扱えるよう p に置き換える。

    タグ・属性は nh3 の既定の許可リストに従う（style / class / イベントハンドラは
    残らない）。URL を持つ属性は `_URL_SCHEMES` と相対 URL のみ許可する。
    """

    cleaned = nh3.clean(
        html,
        clean_content_tags=_DROPPED_CONTENT_TAGS,
        url_schemes=_URL_SCHEMES,
        link_rel=None,
        strip_comments=True,
    )

    soup = _parse(cleaned)
    for tag in soup.find_all("div"):
        tag.name = "p"
    return str(soup).strip()


def html_to_text(html: str) -> str:
    """back-matter 検出用のプレーンテキストに変換する。"""

    soup = _parse(html)
    for tag in soup.find_all(_REMOVED_TAGS):
        if not tag.decomposed:
            tag.decompose()
    for br in soup.find_all("br"):
        br.replace_with("\n")
    for tag in soup.find_all(_TEXT_BLOCK_TAGS):
        tag.append("\n\n")

    text = soup.get_text().replace("\xa0", " ")
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    return _EXCESS_NEWLINES_RE.sub("\n\n", text).strip()


def strip_back_matter_html(html: str, back_matter: BackMatter) -> str:
    """プレーンテキスト側で検出済みの back-matter を HTML からも取り除く。

    段落ごと・div ごと・`<br>` 区切りのいずれの書式でも、末尾の `---` 行と
    その直前の `---` 行を文書順に探して、開始位置以降を切り落とす。
    """

    if not back_matter.metadata:
        return html

    soup = _parse(html)
    if not _truncate_at_back_matter(soup):
        return html

    _trim_tail(soup)
    for paragraph in soup.find_all("p"):
        if _is_br_only(paragraph):
            paragraph.extract()
    return str(soup).strip()


def _truncate_at_back_matter(soup: BeautifulSoup) -> bool:
    lines: list[tuple[NavigableString, int, str]] = []
    for node in soup.find_all(string=True):
        if isinstance(node, Comment):
            continue
        for index, line in enumerate(str(node).split("\n")):
            if _clean(line):
                lines.append((node, index, _clean(line)))

    if len(lines) < 3 or lines[-1][2] != _MARKER:
        return False
    opening = next(
        (pos for pos in range(len(lines) - 2, -1, -1) if lines[pos][2] == _MARKER),
        None,
    )
    if opening is None or opening == len(lines) - 2:
        return False

    node, line_index, _ = lines[opening]
    kept = "\n".join(str(node).split("\n")[:line_index])

    current: Tag | NavigableString | None = node
    while current is not None and current is not soup:
        for sibling in list(current.next_siblings):
            sibling.extract()
        current = current.parent

    if _clean(kept):
        node.replace_with(NavigableString(kept))
    else:
        node.extract()
    return True


def _is_empty(tag: Tag) -> bool:
    return not _clean(tag.get_text()) and tag.find(_CONTENT_TAGS) is None


def _is_br_only(tag: Tag) -> bool:
    if _clean(tag.get_text()):
        return False
    children = [
        child
        for child in tag.children
        if not (isinstance(child, NavigableString) and not _clean(str(child)))
    ]
    return bool(children) and all(
        isinstance(child, Tag) and child.name == "br" for child in children
    )


def _trim_tail(node: Tag) -> None:
    """末尾の空要素・`<br>`・空白を取り除く。"""

    while True:
        children = list(node.children)
        if not children:
            return
        last = children[-1]
        if isinstance(last, NavigableString):
            if isinstance(last, Comment) or not _clean(str(last)):
                last.extract()
                continue
            return
        if last.name == "br":
            last.extract()
            continue
        if last.name in _TRIMMABLE_TAGS and _is_empty(last):
            last.extract()
            continue
        _trim_tail(last)
        return
