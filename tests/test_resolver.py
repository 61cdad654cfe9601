"""
Tests for the resolver service - target URL and header spec parsing.
"""
import pytest

from cfproxy.services.resolver import (
    CapturePolicy,
    ConfigurationError,
    InvalidHeaderSpecError,
    InvalidListenPortError,
    InvalidTargetError,
    ProxyConfig,
    parse_header_spec,
    resolve,
)


class TestResolveTarget:
    """Tests for target URL validation in resolve."""

    @pytest.mark.parametrize("target, scheme, host", [
        ("http://localhost:9000", "http", "localhost:9000"),
        ("https://kubernetes.default.svc.cluster.local", "https", "kubernetes.default.svc.cluster.local"),
        ("HTTPS://Example.com", "https", "Example.com"),
        ("http://10.0.0.5:8443/", "http", "10.0.0.5:8443"),
        ("http://[::1]:9000", "http", "[::1]:9000"),
    ])
    def test_accepts_url_with_scheme_and_host(self, target, scheme, host):
        """URLs with both scheme and host should resolve."""
        config = resolve(target)

        assert isinstance(config, ProxyConfig)
        assert config.scheme == scheme
        assert config.host == host

    @pytest.mark.parametrize("target", [
        "not-a-url",
        "localhost:9000",
        "//localhost:9000",
        "http://",
        "/just/a/path",
        "",
    ])
    def test_rejects_url_missing_scheme_or_host(self, target):
        """URLs missing a scheme or host should fail."""
        with pytest.raises(InvalidTargetError):
            resolve(target)

    def test_rejects_unparseable_url(self):
        """A URL that cannot be parsed should fail with InvalidTargetError."""
        with pytest.raises(InvalidTargetError, match="Error parsing target URL"):
            resolve("http://[::1")

    def test_rejects_invalid_port_in_url(self):
        """A non-numeric port is a parse failure."""
        with pytest.raises(InvalidTargetError):
            resolve("http://localhost:port")

    def test_rejects_unsupported_scheme(self):
        """Only http and https upstreams can be forwarded to."""
        with pytest.raises(InvalidTargetError, match="Unsupported"):
            resolve("ftp://files.example.com")

    def test_upstream_is_normalized(self):
        """Trailing slashes are dropped from the upstream."""
        config = resolve("https://example.com/")

        assert config.upstream == "https://example.com"
        assert config.base_path == ""

    def test_keeps_base_path_and_query(self):
        """A target path and query are kept for joining onto requests."""
        config = resolve("https://example.com/api/?token=1")

        assert config.base_path == "/api"
        assert config.base_query == "token=1"
        assert config.upstream == "https://example.com/api"

    def test_errors_are_value_errors(self):
        """All configuration errors share a ValueError base."""
        assert issubclass(InvalidTargetError, ConfigurationError)
        assert issubclass(InvalidHeaderSpecError, ConfigurationError)
        assert issubclass(ConfigurationError, ValueError)


class TestParseHeaderSpec:
    """Tests for parse_header_spec function."""

    @pytest.mark.parametrize("spec, expected", [
        ("X-Env: staging", ("X-Env", "staging")),
        ("X-Env:staging", ("X-Env", "staging")),
        ("  X-Env  :   staging  ", ("X-Env", "staging")),
        ("Authorization: Bearer a:b:c", ("Authorization", "Bearer a:b:c")),
        ("X-Empty:", ("X-Empty", "")),
    ])
    def test_splits_on_first_colon_and_trims(self, spec, expected):
        """Specs split on the first colon with whitespace trimmed."""
        assert parse_header_spec(spec) == expected

    @pytest.mark.parametrize("spec", ["X-Env staging", "", "no-colon-here"])
    def test_rejects_spec_without_colon(self, spec):
        """Specs without a colon are rejected."""
        with pytest.raises(InvalidHeaderSpecError, match="expected 'Key: Value'"):
            parse_header_spec(spec)

    def test_rejects_empty_name(self):
        """A spec with nothing before the colon is rejected."""
        with pytest.raises(InvalidHeaderSpecError, match="empty name"):
            parse_header_spec(" : value")


class TestResolveHeaders:
    """Tests for extra header handling in resolve."""

    def test_collects_headers(self):
        """Header specs become the extra_headers mapping."""
        config = resolve("http://localhost:9000", ["X-Env: staging", "X-Team: core"])

        assert dict(config.extra_headers) == {"X-Env": "staging", "X-Team": "core"}

    def test_no_headers(self):
        """No specs means no extra headers."""
        config = resolve("http://localhost:9000")
        assert dict(config.extra_headers) == {}

    def test_later_spec_wins_case_insensitively(self):
        """Names are unique regardless of case; the last spec wins."""
        config = resolve("http://localhost:9000", ["x-env: dev", "X-Env: staging"])

        assert dict(config.extra_headers) == {"X-Env": "staging"}

    def test_malformed_spec_fails_resolve(self):
        """A bad header spec fails the whole resolve."""
        with pytest.raises(InvalidHeaderSpecError):
            resolve("http://localhost:9000", ["X-Env: staging", "broken"])

    def test_headers_are_read_only(self):
        """The resolved header mapping cannot be mutated."""
        config = resolve("http://localhost:9000", ["X-Env: staging"])

        with pytest.raises(TypeError):
            config.extra_headers["X-Other"] = "value"


class TestResolveOptions:
    """Tests for the remaining resolve options."""

    def test_defaults(self):
        """Defaults match the documented startup configuration."""
        config = resolve("http://localhost:9000")

        assert config.listen_port == 8080
        assert config.upstream_timeout == 30.0
        assert config.capture_policy is CapturePolicy.ONCE
        assert config.cookie_name == "CF_Authorization"

    @pytest.mark.parametrize("port", [0, -1, 65536])
    def test_rejects_out_of_range_port(self, port):
        """Ports outside 1-65535 are rejected."""
        with pytest.raises(InvalidListenPortError):
            resolve("http://localhost:9000", listen_port=port)

    @pytest.mark.parametrize("port", [1, 8080, 65535])
    def test_accepts_port_in_range(self, port):
        assert resolve("http://localhost:9000", listen_port=port).listen_port == port

    @pytest.mark.parametrize("timeout", [0, -5.0, None])
    def test_non_positive_timeout_disables_it(self, timeout):
        """Zero, negative or missing timeouts mean no timeout."""
        assert resolve("http://localhost:9000", upstream_timeout=timeout).upstream_timeout is None

    def test_capture_policy_from_string(self):
        """Capture policy accepts its string value."""
        config = resolve("http://localhost:9000", capture_policy="refresh")
        assert config.capture_policy is CapturePolicy.REFRESH

    def test_config_is_immutable(self):
        """ProxyConfig cannot be modified after creation."""
        config = resolve("http://localhost:9000")

        with pytest.raises(AttributeError):
            config.host = "elsewhere"
