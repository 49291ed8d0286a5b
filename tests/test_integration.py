"""Unit tests for projects/integration.py -- the domain check.

Covers:
- loopback, private and link-local targets are refused without a request
- a host that resolves to any private address is refused
- a public host is requested with HEAD and redirects are not followed
- network errors are soft failures
- INTEGRATION_CHECK_ALLOW_PRIVATE lets local development domains through
- run_integration_test() reports a refused domain as failing

No test touches the network: name resolution and the HTTP session are patched.
"""

import socket
from unittest.mock import MagicMock, patch

import pytest
import requests

from conftest import make_project, make_user
from projects.integration import check_domain, resolves_to_public, run_integration_test


def _resolving_to(*addresses):
    infos = [(socket.AF_INET, socket.SOCK_STREAM, socket.IPPROTO_TCP, "", (a, 443)) for a in addresses]
    return patch("projects.integration.socket.getaddrinfo", return_value=infos)


class TestAddressGuard:
    @pytest.mark.parametrize(
        "url",
        [
            "http://127.0.0.1:8080",
            "http://10.0.0.5",
            "http://192.168.1.1",
            "http://169.254.169.254",
            "http://[::1]:3000",
            "https://",
            "https://shop.example.com:notaport",
        ],
    )
    def test_rejects_non_public(self, url) -> None:
        assert resolves_to_public(url) is False

    def test_any_private_answer_rejects_the_host(self) -> None:
        with _resolving_to("93.184.216.34", "10.1.2.3"):
            assert resolves_to_public("https://shop.example.com") is False

    def test_unresolvable_host(self) -> None:
        with patch("projects.integration.socket.getaddrinfo", side_effect=socket.gaierror("no such host")):
            assert resolves_to_public("https://nowhere.invalid") is False

    def test_public_host(self) -> None:
        with _resolving_to("93.184.216.34"):
            assert resolves_to_public("https://shop.example.com") is True


class TestCheckDomain:
    def test_private_target_is_not_requested(self) -> None:
        with patch("projects.integration._session.head") as head:
            result = check_domain("http://127.0.0.1:9", timeout=1, allow_private=False)
        head.assert_not_called()
        assert result["reachable"] is False
        assert result["error"] == "private_address"

    def test_public_target_is_requested_without_redirects(self) -> None:
        with _resolving_to("93.184.216.34"), patch("projects.integration._session.head") as head:
            head.return_value = MagicMock(status_code=301)
            result = check_domain("shop.example.com", timeout=2, allow_private=False)
        head.assert_called_once_with("https://shop.example.com", timeout=2, allow_redirects=False)
        assert result["reachable"] is True
        assert result["statusCode"] == 301
        assert result["error"] is None

    def test_network_error_is_soft(self) -> None:
        with _resolving_to("93.184.216.34"), patch(
            "projects.integration._session.head", side_effect=requests.ConnectTimeout("slow")
        ):
            result = check_domain("https://shop.example.com", timeout=1, allow_private=False)
        assert result["reachable"] is False
        assert result["error"] == "ConnectTimeout"

    def test_private_allowed_for_local_development(self) -> None:
        with patch("projects.integration._session.head") as head:
            head.return_value = MagicMock(status_code=200)
            result = check_domain("http://localhost:3000", timeout=1, allow_private=True)
        assert result["reachable"] is True


class TestRunIntegrationTest:
    def test_refused_domain_is_failing(self, stores) -> None:
        owner = make_user(stores)
        project = make_project(stores, owner, domain="http://127.0.0.1:3000")
        result = run_integration_test(stores.projects, project, timeout=1)
        assert result["status"] == "failing"
        assert result["domain"]["error"] == "private_address"
        assert any("private or loopback" in issue for issue in result["issues"])
