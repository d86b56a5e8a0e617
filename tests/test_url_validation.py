from __future__ import annotations

import pytest

from e2e_mcp.browser.actions import resolve_navigation_url
from e2e_mcp.security.url import canonical_ipv4, is_private_host, validate_url


def test_public_https_url_is_normalized() -> None:
    r = validate_url("HTTPS://Example.COM")
    assert r.ok is True
    assert r.value == "https://example.com/"


def test_query_and_port_are_kept() -> None:
    r = validate_url("http://example.com:8080/a/b?x=1#frag")
    assert r.ok is True
    assert r.value == "http://example.com:8080/a/b?x=1#frag"


@pytest.mark.parametrize("url", ["", "not a url", "example.com/path", "http://", "http://example.com:99999/"])
def test_invalid_url(url: str) -> None:
    r = validate_url(url)
    assert r.ok is False
    assert r.error_type == "invalid_url"


@pytest.mark.parametrize(
    ("url", "protocol"),
    [
        ("file:///etc/passwd", "file:"),
        ("ftp://example.com/", "ftp:"),
        ("javascript:alert(1)", "javascript:"),
        ("data:text/html,hi", "data:"),
    ],
)
def test_non_http_schemes(url: str, protocol: str) -> None:
    r = validate_url(url)
    assert r.ok is False
    assert r.error_type == "invalid_protocol"
    assert r.error.details["protocol"] == protocol


@pytest.mark.parametrize(
    "url",
    [
        "http://localhost:3000/",
        "http://127.0.0.1/",
        "http://127.8.9.10/",
        "http://10.0.0.1/",
        "http://172.16.0.1/",
        "http://172.31.255.255/",
        "http://192.168.1.10/",
        "http://169.254.169.254/latest/meta-data/",
        "http://[::1]:8080/",
        "http://[::ffff:127.0.0.1]/",
        "http://[::ffff:7f00:1]/",
        "http://[0:0:0:0:0:0:0:1]/",
        "http://localhost./",
        "http://LOCALHOST:3000/",
        "http://127.0.0.1./",
        "http://127.1/",
        "http://127.1:8080/admin",
        "http://2130706433/",
        "http://0x7f000001/",
        "http://0X7F.0.0.1/",
        "http://0177.0.0.1/",
        "http://0177.1/",
        "http://10.1/",
        "http://167772161/",
        "http://192.168.257/",
        "http://0xa9fea9fe/latest/meta-data/",
        "http://0/",
        "http://0.0.0.0:3000/",
    ],
)
def test_private_addresses_are_blocked(url: str) -> None:
    r = validate_url(url)
    assert r.ok is False
    assert r.error_type == "private_ip"


@pytest.mark.parametrize("host", ["172.15.0.1", "172.32.0.1", "8.8.8.8", "example.com"])
def test_edges_of_private_ranges_are_public(host: str) -> None:
    assert is_private_host(host) is False
    assert validate_url(f"http://{host}/").ok is True


def test_hostnames_are_not_resolved() -> None:
    # A name pointing at a private address is accepted; only literals are checked.
    assert is_private_host("internal.example.com") is False


def test_allowed_hosts_exact_match() -> None:
    assert validate_url("https://example.com/", allowed_hosts=["example.com"]).ok is True

    r = validate_url("https://evil.com/", allowed_hosts=["example.com"])
    assert r.ok is False
    assert r.error_type == "host_not_allowed"
    assert r.error.details["hostname"] == "evil.com"


def test_allowed_hosts_wildcard() -> None:
    allowed = ["*.example.com"]
    assert validate_url("https://api.example.com/", allowed_hosts=allowed).ok is True
    assert validate_url("https://a.b.example.com/", allowed_hosts=allowed).ok is True
    assert validate_url("https://example.com/", allowed_hosts=allowed).error_type == "host_not_allowed"
    assert validate_url("https://evilexample.com/", allowed_hosts=allowed).error_type == "host_not_allowed"


def test_private_check_runs_before_allow_list() -> None:
    r = validate_url("http://localhost/", allowed_hosts=["localhost"])
    assert r.error_type == "private_ip"


def test_empty_allow_list_means_unrestricted() -> None:
    assert validate_url("https://anything.dev/", allowed_hosts=[]).ok is True


@pytest.mark.parametrize(
    ("host", "canonical"),
    [
        ("127.1", "127.0.0.1"),
        ("2130706433", "127.0.0.1"),
        ("0x7f000001", "127.0.0.1"),
        ("0177.0.0.1", "127.0.0.1"),
        ("10.1", "10.0.0.1"),
        ("192.168.257", "192.168.1.1"),
        ("0x08.0x08.0x08.0x08", "8.8.8.8"),
        ("8.8.8.8.", "8.8.8.8"),
        ("0x", "0.0.0.0"),
    ],
)
def test_numeric_hosts_are_canonicalized(host: str, canonical: str) -> None:
    assert canonical_ipv4(host) == canonical


@pytest.mark.parametrize("host", ["example.com", "1.2.3.example", "localhost", "0x7f.example.com"])
def test_domain_names_are_not_numeric_hosts(host: str) -> None:
    assert canonical_ipv4(host) is None


@pytest.mark.parametrize("host", ["256.0.0.1", "1.2.3.256", "4294967296", "1.2.3.4.5", "08.0.0.1", "1..2", "a.1"])
def test_malformed_numeric_hosts_raise(host: str) -> None:
    with pytest.raises(ValueError):
        canonical_ipv4(host)


@pytest.mark.parametrize("url", ["http://256.0.0.1/", "http://1.2.3.4.5/", "http://1.2.3.08/"])
def test_malformed_numeric_host_is_invalid_url(url: str) -> None:
    assert validate_url(url).error_type == "invalid_url"


def test_public_numeric_host_is_returned_canonical() -> None:
    r = validate_url("http://0x08080808:8080/dns?q=1")
    assert r.ok is True
    assert r.value == "http://8.8.8.8:8080/dns?q=1"


def test_private_error_reports_canonical_hostname() -> None:
    r = validate_url("http://2130706433/")
    assert r.error_type == "private_ip"
    assert r.error.details["hostname"] == "127.0.0.1"


def test_trailing_dot_is_ignored_for_allow_list() -> None:
    assert validate_url("https://example.com./", allowed_hosts=["example.com"]).ok is True


def test_navigation_gate_blocks_numeric_loopback_on_other_ports() -> None:
    r = resolve_navigation_url("http://127.1:8080/admin", "http://localhost:3001")
    assert r.error_type == "private_ip"

    r = resolve_navigation_url("http://0x7f000001:3001/", "http://localhost:3001")
    assert r.error_type == "private_ip"


def test_navigation_gate_compares_canonical_origins() -> None:
    assert resolve_navigation_url("/login", "http://localhost:3001").value == "http://localhost:3001/login"
    assert resolve_navigation_url("http://localhost.:3001/x", "http://localhost:3001").ok is True
    assert resolve_navigation_url("http://127.1:3001/", "http://127.0.0.1:3001").ok is True
    assert resolve_navigation_url("https://localhost:3001/", "http://localhost:3001").error_type == "private_ip"
