"""Tests for the repository security-policy lookup."""

import httpx
import pytest

from guardpkg.adapters.github import GitHubFetcher, parse_github_repo

GITHUB = "https://github.test"


def _fetcher(handler, seen: list[str] | None = None) -> GitHubFetcher:
    def record(request):
        if seen is not None:
            seen.append(request.url.path)
        return handler(request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(record))
    return GitHubFetcher(token="test-token", client=client, base_url=GITHUB)


class TestParseGithubRepo:
    @pytest.mark.parametrize(
        "url,expected",
        [
            ("https://github.com/acme/widget", ("acme", "widget")),
            ("git+https://github.com/acme/widget.git", ("acme", "widget")),
            ("git@github.com:acme/widget.git", ("acme", "widget")),
            ("https://gitlab.com/acme/widget", None),
            (None, None),
        ],
    )
    def test_urls(self, url, expected):
        assert parse_github_repo(url) == expected


class TestHasSecurityPolicy:
    """Test SECURITY.md and community profile checks."""

    @pytest.mark.asyncio
    async def test_security_md(self):
        seen = []

        def handler(request):
            assert request.headers["Authorization"] == "Bearer test-token"
            return httpx.Response(200, json={"name": "SECURITY.md"})

        assert await _fetcher(handler, seen).has_security_policy("https://github.com/acme/widget")
        assert seen == ["/repos/acme/widget/contents/SECURITY.md"]

    @pytest.mark.asyncio
    async def test_community_profile(self):
        def handler(request):
            if request.url.path.endswith("/community/profile"):
                return httpx.Response(200, json={"files": {"security_policy": {"url": "x"}}})
            return httpx.Response(404)

        assert await _fetcher(handler).has_security_policy("https://github.com/acme/widget")

    @pytest.mark.asyncio
    async def test_no_policy(self):
        def handler(request):
            if request.url.path.endswith("/community/profile"):
                return httpx.Response(200, json={"files": {"security_policy": None}})
            return httpx.Response(404)

        assert not await _fetcher(handler).has_security_policy("https://github.com/acme/widget")

    @pytest.mark.asyncio
    async def test_failure_counts_as_no_policy(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        assert not await _fetcher(handler).has_security_policy("https://github.com/acme/widget")

    @pytest.mark.asyncio
    async def test_rate_limited(self):
        fetcher = _fetcher(lambda request: httpx.Response(403))
        assert not await fetcher.has_security_policy("https://github.com/acme/widget")

    @pytest.mark.asyncio
    async def test_non_github_repository_makes_no_request(self):
        seen = []
        fetcher = _fetcher(lambda request: httpx.Response(200, json={}), seen)

        assert not await fetcher.has_security_policy("https://gitlab.com/acme/widget")
        assert seen == []
