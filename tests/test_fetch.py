# tests/test_fetch.py
"""
Tests du fetcher : aucun vrai appel réseau, requests.get est simulé
(comme les appels Gemini dans les autres tests).
"""

from unittest.mock import patch

import pytest
import requests
from feedback_guard import fetch
from feedback_guard.exceptions import BlockedByPolicy, FetchError, InvalidResponse, TransportError
from feedback_guard.fetch import fetch_json, host_of, load_allowlist, parse_allowlist

ALLOW = ["api.github.com"]


def make_response(status=200, body=b'{"current_user_url": "https://api.github.com/user"}'):
    response = requests.models.Response()
    response.status_code = status
    response._content = body
    response.headers["Content-Type"] = "application/json"
    return response


# === Allowlist ===

class TestAllowlist:

    @pytest.mark.parametrize("url", [
        "https://evil.example/x",
        "https://API.github.com/",          # casse différente
        "https://sub.api.github.com/",      # pas de sous-domaine
        "https://api.github.com.evil.example/",
        "https://api.github.com@evil.example/",
        "/relative/path",
        "",
        "not a url",
    ])
    def test_blocked_without_network_call(self, url):
        with patch("feedback_guard.fetch.requests.get") as mock_get:
            with pytest.raises(BlockedByPolicy):
                fetch_json(url, ALLOW)
        mock_get.assert_not_called()

    def test_empty_allowlist_blocks_everything(self):
        with patch("feedback_guard.fetch.requests.get") as mock_get:
            with pytest.raises(BlockedByPolicy):
                fetch_json("https://api.github.com/", [])
        mock_get.assert_not_called()

    def test_text_allowlist_is_split_on_commas(self):
        """Une allowlist passée en texte n'est pas découpée en caractères."""
        with patch("feedback_guard.fetch.requests.get", return_value=make_response()) as mock_get:
            assert "current_user_url" in fetch_json("https://api.github.com/", "example.org, api.github.com")
            with pytest.raises(BlockedByPolicy):
                fetch_json("https://a/", "api.github.com")
        assert mock_get.call_count == 1

    def test_blocked_is_a_fetch_error(self):
        with pytest.raises(FetchError):
            fetch_json("https://evil.example/", ALLOW)

    def test_parse_allowlist(self):
        assert parse_allowlist(" api.github.com, ,example.org ,") == frozenset({"api.github.com", "example.org"})
        assert parse_allowlist("") == frozenset()
        assert parse_allowlist(None) == frozenset()

    @pytest.mark.parametrize("url, host", [
        ("https://api.github.com/", "api.github.com"),
        ("https://api.github.com:8443/x", "api.github.com"),
        ("https://user:pw@api.github.com/", "api.github.com"),
        ("https://Api.GitHub.com/", "Api.GitHub.com"),
        ("http://[::1]:8080/", "[::1]"),
        ("https:///nohost", ""),
    ])
    def test_host_of(self, url, host):
        assert host_of(url) == host

    def test_load_allowlist_from_env(self, monkeypatch):
        monkeypatch.setenv("API_ALLOWLIST", "api.github.com,example.org")
        load_allowlist.cache_clear()
        try:
            assert load_allowlist() == frozenset({"api.github.com", "example.org"})
            # Figée pour la vie du processus
            monkeypatch.setenv("API_ALLOWLIST", "autre.example")
            assert load_allowlist() == frozenset({"api.github.com", "example.org"})
        finally:
            load_allowlist.cache_clear()

    def test_app_allowlist_used_in_app_context(self, app):
        with app.app_context(), patch("feedback_guard.fetch.requests.get", return_value=make_response()):
            assert "current_user_url" in fetch_json("https://api.github.com/")
            with pytest.raises(BlockedByPolicy):
                fetch_json("https://example.org/")


# === Appel réseau ===

class TestAppel:

    def test_success(self):
        with patch("feedback_guard.fetch.requests.get", return_value=make_response()) as mock_get:
            data = fetch_json("https://api.github.com/", ALLOW)

        assert data == {"current_user_url": "https://api.github.com/user"}
        _, kwargs = mock_get.call_args
        assert kwargs["allow_redirects"] is False
        assert kwargs["verify"] is True
        assert kwargs["timeout"] == fetch.DEFAULT_TIMEOUT == 3
        assert kwargs["headers"]["Accept"] == "application/json"
        assert mock_get.call_count == 1

    def test_array_body(self):
        with patch("feedback_guard.fetch.requests.get", return_value=make_response(body=b"[1, 2]")):
            assert fetch_json("https://api.github.com/", ALLOW) == [1, 2]

    @pytest.mark.parametrize("status", [301, 302, 307, 404, 500, 503])
    def test_http_failure(self, status):
        with patch("feedback_guard.fetch.requests.get", return_value=make_response(status=status)) as mock_get:
            with pytest.raises(TransportError):
                fetch_json("https://api.github.com/", ALLOW)
        # Une seule tentative
        assert mock_get.call_count == 1

    @pytest.mark.parametrize("error", [
        requests.exceptions.Timeout("trop lent"),
        requests.exceptions.ConnectionError("refusé"),
        requests.exceptions.SSLError("certificat invalide"),
        requests.exceptions.InvalidSchema("ftp"),
    ])
    def test_transport_errors(self, error):
        with patch("feedback_guard.fetch.requests.get", side_effect=error):
            with pytest.raises(TransportError):
                fetch_json("https://api.github.com/", ALLOW)

    @pytest.mark.parametrize("body", [b"<html>oops</html>", b"", b"42", b'"texte"', b"null"])
    def test_invalid_body(self, body):
        with patch("feedback_guard.fetch.requests.get", return_value=make_response(body=body)):
            with pytest.raises(InvalidResponse):
                fetch_json("https://api.github.com/", ALLOW)


def test_caller_can_degrade_gracefully():
    """Usage attendu : l'échec devient une simple note, pas une erreur 500."""
    with patch("feedback_guard.fetch.requests.get", side_effect=requests.exceptions.Timeout()):
        try:
            api_info = fetch_json("https://api.github.com/", ALLOW)
        except FetchError as e:
            api_info = {"note": f"API call blocked/failed: {e.message}"}
    assert api_info == {"note": "API call blocked/failed: API request failed"}
