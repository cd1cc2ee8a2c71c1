"""Tests for server URL helpers."""

from __future__ import annotations

import pytest

from maclient.exceptions import MAValidationError
from maclient.url_helpers import (
    build_server_url,
    build_ws_url,
    default_port,
    host_of,
    is_local_host,
    join_endpoint,
    normalize_server_url,
    origin_of,
)


class TestNormalizeServerUrl:
    """Tests for normalize_server_url."""

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("192.168.1.10", "http://192.168.1.10"),
            ("10.0.0.5:8095", "http://10.0.0.5:8095"),
            ("172.16.0.1", "http://172.16.0.1"),
            ("127.0.0.1", "http://127.0.0.1"),
            ("localhost", "http://localhost"),
            ("music.example.com", "https://music.example.com"),
            ("  music.example.com/  ", "https://music.example.com"),
            ("music.example.com///", "https://music.example.com"),
            ("http://music.example.com", "http://music.example.com"),
            ("https://192.168.1.10/", "https://192.168.1.10"),
        ],
    )
    def test_normalization(self, raw: str, expected: str) -> None:
        """Test scheme defaulting, trimming and slash stripping."""
        assert normalize_server_url(raw) == expected

    def test_localhost_with_port_is_not_local(self) -> None:
        """Test that only the bare word localhost gets http."""
        assert normalize_server_url("localhost:8095") == "https://localhost:8095"

    def test_normalization_is_idempotent(self) -> None:
        """Test normalizing a normalized URL changes nothing."""
        once = normalize_server_url(" 192.168.1.10/ ")
        assert normalize_server_url(once) == once

    @pytest.mark.parametrize("raw", ["", "   ", "///"])
    def test_empty_input_raises(self, raw: str) -> None:
        """Test empty input is a validation error."""
        with pytest.raises(MAValidationError) as exc_info:
            normalize_server_url(raw)
        assert exc_info.value.field == "server_url"

    def test_hostless_input_raises(self) -> None:
        """Test a scheme without host is rejected."""
        with pytest.raises(MAValidationError):
            normalize_server_url("https://:8095")


class TestBuildServerUrl:
    """Tests for build_server_url."""

    def test_no_port(self) -> None:
        """Test URL is unchanged without a port."""
        assert build_server_url("https://music.example.com", None) == "https://music.example.com"

    def test_default_https_port_omitted(self) -> None:
        """Test 443 is not appended to https URLs."""
        assert build_server_url("https://music.example.com", 443) == "https://music.example.com"

    def test_default_http_port_omitted(self) -> None:
        """Test 80 is not appended to http URLs."""
        assert build_server_url("http://192.168.1.10", 80) == "http://192.168.1.10"

    def test_custom_port_appended(self) -> None:
        """Test a custom port is appended."""
        assert build_server_url("http://192.168.1.10", 8095) == "http://192.168.1.10:8095"

    def test_cross_scheme_default_port_appended(self) -> None:
        """Test 443 on http is not a default port."""
        assert build_server_url("http://192.168.1.10", 443) == "http://192.168.1.10:443"

    def test_existing_port_kept(self) -> None:
        """Test an explicit port in the URL wins."""
        assert build_server_url("http://192.168.1.10:9000", 8095) == "http://192.168.1.10:9000"

    def test_invalid_port_in_url(self) -> None:
        """Test an out of range port in the URL is a validation error."""
        with pytest.raises(MAValidationError) as exc_info:
            build_server_url("http://192.168.1.10:99999", 8095)
        assert exc_info.value.field == "port"


class TestBuildWsUrl:
    """Tests for build_ws_url."""

    def test_http_gets_default_server_port(self) -> None:
        """Test plain ws without a port uses 8095."""
        assert build_ws_url("http://192.168.1.10") == "ws://192.168.1.10:8095/ws"

    def test_https_keeps_implicit_port(self) -> None:
        """Test wss without a port stays implicit."""
        assert build_ws_url("https://music.example.com") == "wss://music.example.com/ws"

    def test_explicit_port_kept(self) -> None:
        """Test an explicit port is kept for both schemes."""
        assert build_ws_url("http://192.168.1.10:9000") == "ws://192.168.1.10:9000/ws"
        assert build_ws_url("https://music.example.com:8443") == "wss://music.example.com:8443/ws"

    def test_path_replaced(self) -> None:
        """Test any path is replaced by /ws."""
        assert build_ws_url("https://example.com/music") == "wss://example.com/ws"


class TestHelpers:
    """Tests for the smaller helpers."""

    def test_default_port(self) -> None:
        """Test implicit ports per scheme."""
        assert default_port("http") == 80
        assert default_port("https") == 443
        assert default_port("wss") == 443

    def test_host_and_origin(self) -> None:
        """Test host and origin extraction."""
        url = "https://Auth.Example.com:8443/login?rd=x"
        assert host_of(url) == "auth.example.com"
        assert origin_of(url) == "https://Auth.Example.com:8443"
        assert host_of("not a url") == ""

    def test_join_endpoint(self) -> None:
        """Test endpoint replaces path and query."""
        assert join_endpoint("https://auth.example.com/x?y=1", "/api/firstfactor") == (
            "https://auth.example.com/api/firstfactor"
        )

    @pytest.mark.parametrize(
        ("host", "expected"),
        [
            ("192.168.1.10", True),
            ("10.1.2.3", True),
            ("127.0.0.1", True),
            ("localhost", True),
            ("ma.local", True),
            ("8.8.8.8", False),
            ("music.example.com", False),
        ],
    )
    def test_is_local_host(self, host: str, expected: bool) -> None:
        """Test local host classification."""
        assert is_local_host(host) is expected
