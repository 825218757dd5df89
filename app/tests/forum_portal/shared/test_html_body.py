"""イベント本文 HTML の無害化・back-matter 除去のテスト。"""

from __future__ import annotations

import pytest

from forum_portal.core.models import BackMatter
from forum_portal.shared.back_matter import parse_back_matter
from forum_portal.shared.html_body import html_to_text, sanitize_html, strip_back_matter_html


def _strip(html: str) -> str:
    sanitized = sanitize_html(html)
    return strip_back_matter_html(sanitized, parse_back_matter(html_to_text(html)))


def test_スタイルとスクリプトを除去し_div_を段落にする() -> None:
    html = (
        '<div style="color:red" class="MsoNormal"><font face="Calibri">Hallo</font></div>'
        "<script>alert(1)</script>"
    )

    assert sanitize_html(html) == "<p>Hallo</p>"


def test_完全な_html_文書は_body_の中身だけを使う() -> None:
    html = (
        "<html><head><meta charset='utf-8'><style>p { margin: 0 }</style></head>"
        "<body><!-- Outlook --><p>Tekst</p></body></html>"
    )

    assert sanitize_html(html) == "<p>Tekst</p>"


def test_イベントハンドラと_javascript_url_を除去する() -> None:
    html = '<p onclick="steal()"><a href="javascript:alert(1)">klik</a> <a href="https://caesar.nl">site</a></p>'

    result = sanitize_html(html)

    assert "onclick" not in result
    assert "javascript:" not in result
    assert '<a href="https://caesar.nl">site</a>' in result


def test_プレーンテキスト変換() -> None:
    assert html_to_text("<p>Een</p><p>Twee</p>") == "Een\n\nTwee"
    assert html_to_text("Een<br>Twee&nbsp;Drie") == "Een\nTwee Drie"


def test_段落ごとの書式から_back_matter_を除去する() -> None:
    html = "<p>Beschrijving</p><p>---</p><p>capacity: 20</p><p>---</p>"

    assert _strip(html) == "<p>Beschrijving</p>"


def test_div_の書式から_back_matter_を除去する() -> None:
    html = (
        "<div>Beschrijving</div><div>&nbsp;</div>"
        "<div>---</div><div>diet-form: true</div><div>---</div>"
    )

    assert _strip(html) == "<p>Beschrijving</p>"


def test_br_区切りの書式から_back_matter_を除去する() -> None:
    html = "<p>Beschrijving<br>---<br>slug: mijn-sessie<br>---</p>"

    assert _strip(html) == "<p>Beschrijving</p>"


def test_複数段落の本文は残す() -> None:
    html = "<p>Eerste</p><p>Tweede</p><p>---</p><p>slug: x</p><p>---</p>"

    assert _strip(html) == "<p>Eerste</p><p>Tweede</p>"


@pytest.mark.parametrize(
    "html",
    [
        "<p>Alleen tekst</p>",
        "<p>Tekst</p><p>---</p><p>geen metadata</p><p>---</p>",
    ],
)
def test_メタデータが無ければ_html_はそのまま(html: str) -> None:
    sanitized = sanitize_html(html)

    assert _strip(html) == sanitized


def test_区切りが見つからなければ_html_はそのまま() -> None:
    back_matter = BackMatter(metadata={"slug": "x"}, content="Tekst")

    assert strip_back_matter_html("<p>Tekst</p>", back_matter) == "<p>Tekst</p>"


@pytest.mark.parametrize(
    "html",
    [
        '<p><a href="java&#x09;script:alert(1)">x</a></p>',
        '<p><a href="  JaVaScRiPt:alert(1)">x</a></p>',
        '<svg><a xlink:href="javascript:alert(1)">x</a></svg>',
        '<form action="javascript:alert(1)"><button formaction="javascript:alert(1)">x</button></form>',
        '<base href="javascript:alert(1)//"><img src="data:text/html;base64,PHNjcmlwdD4=">',
    ],
)
def test_危険な_url_は属性名や表記揺れに関係なく残らない(html: str) -> None:
    result = sanitize_html(html).lower()

    assert "javascript" not in result
    assert "xlink" not in result
    assert "formaction" not in result
    assert "data:" not in result
    assert "<base" not in result
    assert "<form" not in result


def test_許可されたリンクと画像は残る() -> None:
    html = '<p><a href="mailto:forum@caesar.nl">mail</a> <img src="https://caesar.nl/logo.png" alt="logo"></p>'

    result = sanitize_html(html)

    assert 'href="mailto:forum@caesar.nl"' in result
    assert 'src="https://caesar.nl/logo.png"' in result
