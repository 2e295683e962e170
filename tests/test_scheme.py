import pytest

from errors import MalformedSchemeError
from models import SchemeForm
from scheme import detect_form, format_auto_link, parse_auto_link


def test_triple_form_with_all_parts():
    link = parse_auto_link("autohttps://news.example.com/latest@article h2 a@div.post-body")

    assert link.page_url == "https://news.example.com/latest"
    assert link.item_selector == "article h2 a"
    assert link.content_selector == "div.post-body"
    assert link.form is SchemeForm.TRIPLE


def test_triple_form_content_selector_defaults_to_body():
    for uri in ("autohttp://example.com/@a.story", "autohttp://example.com/@a.story@"):
        link = parse_auto_link(uri)
        assert link.page_url == "http://example.com/"
        assert link.item_selector == "a.story"
        assert link.content_selector == "body"


def test_triple_form_percent_decodes_selectors():
    link = parse_auto_link("autohttps://example.com/news@span.titleline%20%3E%20a@div%23main")

    assert link.item_selector == "span.titleline > a"
    assert link.content_selector == "div#main"


def test_triple_form_keeps_query_string():
    link = parse_auto_link("autohttps://example.com/list?page=2&sort=new@li > a")

    assert link.page_url == "https://example.com/list?page=2&sort=new"


def test_pair_form_splits_on_last_tilde():
    link = parse_auto_link("autohttps://example.com/~user/posts~ul.posts > li > a")

    assert link.form is SchemeForm.PAIR
    assert link.page_url == "https://example.com/~user/posts"
    assert link.item_selector == "ul.posts > li > a"
    assert link.content_selector is None


def test_pair_form_decodes_selector_only():
    link = parse_auto_link("autohttps://example.com/a%20b~div%20%3E%20a")

    assert link.page_url == "https://example.com/a%20b"
    assert link.item_selector == "div > a"


def test_detect_form_prefers_triple_delimiter():
    assert detect_form("autohttps://example.com/~user@a") is SchemeForm.TRIPLE
    assert detect_form("autohttps://example.com/~a") is SchemeForm.PAIR
    assert detect_form("autohttps://example.com/%40a") is SchemeForm.TRIPLE


def test_forced_form_overrides_detection():
    link = parse_auto_link("autohttps://example.com/news~a.item", form=SchemeForm.PAIR)

    assert link.item_selector == "a.item"


@pytest.mark.parametrize(
    "uri",
    [
        "",
        "   ",
        "autohttps://example.com/news",             # no delimiter at all
        "https://example.com/news@a",               # missing auto prefix
        "autohttps://example.com/news@",            # empty item selector
        "autohttps://example.com/news@  @body",     # blank item selector
        "autohttps://example.com/news@a@b@c",       # too many segments
        "autoftp://example.com/news@a",             # unsupported page scheme
        "autohttps:///news@a",                      # no host
        "autohttps://example.com/news@a%zz",        # broken escape
        "autohttps://example.com/news@%ff",         # not UTF-8
        "autohttps://example.com/news~",            # pair form without selector
    ],
)
def test_malformed_uris_are_rejected(uri):
    with pytest.raises(MalformedSchemeError):
        parse_auto_link(uri)


def test_format_triple_round_trips():
    uri = format_auto_link("https://example.com/news?id=1", "span.titleline > a", "div#main p")
    link = parse_auto_link(uri)

    assert link.page_url == "https://example.com/news?id=1"
    assert link.item_selector == "span.titleline > a"
    assert link.content_selector == "div#main p"


def test_format_triple_escapes_percent_in_page_url():
    uri = format_auto_link("https://example.com/a%20b", "a")

    assert parse_auto_link(uri).page_url == "https://example.com/a%20b"


def test_format_pair_round_trips_selector_with_tilde():
    uri = format_auto_link("https://example.com/news", "h2 ~ p a", form=SchemeForm.PAIR)
    link = parse_auto_link(uri)

    assert link.form is SchemeForm.PAIR
    assert link.item_selector == "h2 ~ p a"


def test_format_triple_rejects_at_sign():
    with pytest.raises(ValueError):
        format_auto_link("https://example.com/", "a[href^='mailto:x@y']")
