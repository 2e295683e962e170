import pytest
from bs4 import BeautifulSoup

from document import (
    element_href,
    element_text,
    inject_base_href,
    parse_document,
    render_item_content,
    select,
)
from errors import EnrichmentFailure, SelectorError


LISTING = """
<html><head><title> Front   page </title></head>
<body>
  <ul>
    <li class="story"><a href="/one">First
        story</a></li>
    <li class="story"><a>No link</a></li>
    <li class="story"><a href="three.html">Third <b>story</b></a></li>
  </ul>
  <p>unclosed <div>tags
</body>
"""


def test_select_returns_matches_in_document_order():
    document = parse_document(LISTING, "http://a.com/list")

    anchors = select(document, "li.story > a")

    assert [element_text(a) for a in anchors] == ["First story", "No link", "Third story"]
    assert [element_href(a) for a in anchors] == ["/one", "", "three.html"]


def test_select_without_matches_is_empty():
    document = parse_document(LISTING, "http://a.com/list")

    assert select(document, "article h2 a") == []


def test_invalid_selector_raises_selector_error():
    document = parse_document(LISTING, "http://a.com/list")

    with pytest.raises(SelectorError) as excinfo:
        select(document, "li[")
    assert excinfo.value.selector == "li["


def test_document_title():
    assert parse_document(LISTING, "http://a.com/").title == "Front page"
    assert parse_document("<p>none</p>", "http://a.com/").title is None


def test_parse_accepts_bytes_with_declared_charset():
    markup = '<html><head><meta charset="iso-8859-1"></head><body><a href="/">caf\xe9</a></body></html>'
    document = parse_document(markup.encode("iso-8859-1"), "http://a.com/")

    assert element_text(select(document, "a")[0]) == "caf\xe9"


def test_render_item_content_wraps_first_match():
    page = (
        '<html><head><link rel="stylesheet" href="s.css"></head><body>'
        '<div class="post"><p>first <img src="i.png"></p></div>'
        '<div class="post"><p>second</p></div></body></html>'
    )

    html = render_item_content(page, "http://a.com/posts/1?x=1&y=2", "div.post")

    soup = BeautifulSoup(html, "html.parser")
    assert soup.head.base["href"] == "http://a.com/posts/1?x=1&y=2"
    assert soup.head.find("link")["href"] == "s.css"
    assert soup.body.find("img")["src"] == "i.png"
    assert "second" not in html
    assert html.startswith('<html><head><base href="http://a.com/posts/1?x=1&amp;y=2">')


def test_render_item_content_without_match_has_empty_body():
    html = render_item_content("<html><head></head><body><p>x</p></body></html>", "http://a.com/", "article")

    assert html.endswith("<body></body></html>")


def test_render_item_content_without_head():
    html = render_item_content("<p>bare</p>", "http://a.com/x", "p")

    assert html == '<html><head><base href="http://a.com/x"></head><body>bare</body></html>'


def test_default_body_selector_matches_implied_body():
    page = "<!doctype html><title>x</title><p>Hello item</p>"

    html = render_item_content(page, "https://a.com/1", "body")

    assert html == (
        '<html><head><base href="https://a.com/1"><title>x</title></head>'
        "<body><p>Hello item</p></body></html>"
    )


def test_tbody_selector_matches_table_without_tbody():
    markup = (
        '<table id="t"><tr><td><a href="/1">One</a></td></tr>'
        '<tr><td><a href="/2">Two</a></td></tr></table>'
    )
    document = parse_document(markup, "http://a.com/")

    anchors = select(document, "table#t > tbody > tr > td > a")

    assert [element_href(a) for a in anchors] == ["/1", "/2"]


def test_inject_base_href_before_first_closing_head():
    page = "<html><HEAD><title>t</title></Head ><body>x</head></body></html>"

    result = inject_base_href(page.encode("utf-8"), "http://a.com/dir/")

    assert result == (
        '<html><HEAD><title>t</title><base href="http://a.com/dir/"></Head ><body>x</head></body></html>'
    )


def test_inject_base_href_requires_head():
    with pytest.raises(EnrichmentFailure):
        inject_base_href(b"<html><body>no head</body></html>", "http://a.com/")
