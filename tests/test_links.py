import pytest

from errors import InvalidLinkError
from links import current_directory, resolve_link, site_root


def test_absolute_path_is_joined_to_site_root():
    assert resolve_link("/x", "http://a.com/b/c") == "http://a.com/x"


def test_relative_path_is_joined_to_page_directory():
    assert resolve_link("x", "http://a.com/b/c") == "http://a.com/b/x"


def test_href_with_scheme_is_unchanged():
    assert resolve_link("http://z.com/x", "http://a.com/b") == "http://z.com/x"
    assert resolve_link("mailto:someone@example.com", "http://a.com/b") == "mailto:someone@example.com"


def test_explicit_port_is_kept():
    assert resolve_link("/x", "http://a.com:8080/b/c") == "http://a.com:8080/x"
    assert resolve_link("item?id=4", "https://a.com:8443/list/") == "https://a.com:8443/list/item?id=4"


def test_empty_page_path_defaults_to_root_directory():
    assert current_directory("http://a.com") == "/"
    assert resolve_link("x", "http://a.com") == "http://a.com/x"


def test_page_directory_ignores_query():
    assert current_directory("https://news.example.com/newest?n=30") == "/"
    assert resolve_link("item?id=1", "https://news.example.com/newest?n=30") == "https://news.example.com/item?id=1"


def test_protocol_relative_href_takes_page_scheme():
    assert resolve_link("//cdn.example.com/a", "https://a.com/b") == "https://cdn.example.com/a"


def test_site_root_drops_userinfo_and_brackets_ipv6():
    assert site_root("http://user:pw@a.com/b") == "http://a.com"
    assert site_root("http://[::1]:8000/b") == "http://[::1]:8000"


def test_surrounding_whitespace_is_stripped():
    assert resolve_link("  /x\n", "http://a.com/b/c") == "http://a.com/x"


@pytest.mark.parametrize("href", ["", "   ", None])
def test_empty_href_is_invalid(href):
    with pytest.raises(InvalidLinkError):
        resolve_link(href, "http://a.com/b/c")


@pytest.mark.parametrize("href", ["/a b", "x\x00y", "http://a.com:99999/x"])
def test_unparseable_result_is_invalid(href):
    with pytest.raises(InvalidLinkError):
        resolve_link(href, "http://a.com/b/c")
