"""Tests for the built-in tools and their httpx-backed services."""

import json

import httpx
import pytest

from toolbridge.agent.tool_executor import execute_tool
from toolbridge.api.app import create_app
from toolbridge.tools import ToolRegistry
from toolbridge.tools.builtin import (
    ToolServices,
    build_default_registry,
)
from toolbridge.tools.services import (
    GoogleNewsService,
    HttpGitHubService,
    HttpSocialPostService,
    HttpWikipediaService,
    OfflineSocialPostService,
    ServiceError,
)

RSS = """<?xml version="1.0"?>
<rss><channel>
  <item><title>First</title><link>https://a.example/1</link></item>
  <item><title>Second</title><link>https://a.example/2</link></item>
  <item><title>Third</title><link>https://a.example/3</link></item>
</channel></rss>"""


def mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_adder_formats_integers(registry: ToolRegistry) -> None:
    result = await execute_tool(registry, "adder", {"a": 2, "b": 3})
    assert result.text == "Result: The sum of 2 and 3 is 5."
    result = await execute_tool(registry, "adder", {"a": 0.5, "b": 0.25})
    assert "is 0.75." in result.text


@pytest.mark.asyncio
async def test_print_menu(registry: ToolRegistry) -> None:
    result = await execute_tool(registry, "print-menu", {"items": ["one", "two"], "title": "Menu"})
    assert result.text == "Menu\n\n(1) one\n(2) two"
    bad = await execute_tool(registry, "print-menu", {"items": [1, 2]})
    assert bad.is_error


@pytest.mark.asyncio
async def test_news_uses_limit(registry: ToolRegistry) -> None:
    result = await execute_tool(registry, "news-by-topic", {"topic": "AI"})
    assert result.text.startswith('Top News for "AI":')
    assert "[3] AI story 2" in result.text


@pytest.mark.asyncio
async def test_github_failure_is_error_result(registry: ToolRegistry) -> None:
    ok = await execute_tool(registry, "github-repo-info", {"owner": "octocat", "repo": "hello"})
    assert "Stars: 58" in ok.text
    missing = await execute_tool(registry, "github-repo-info", {"owner": "octocat", "repo": "missing"})
    assert missing.is_error
    assert "octocat/missing" in missing.text


@pytest.mark.asyncio
async def test_post_records_status(registry: ToolRegistry, services: ToolServices) -> None:
    result = await execute_tool(registry, "twitter-X-post", {"status": "hello"})
    assert "12345" in result.text
    assert services.social.posts == ["hello"]


@pytest.mark.asyncio
async def test_github_service_parses_response() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/repos/octocat/hello"
        return httpx.Response(
            200,
            json={
                "full_name": "octocat/hello",
                "description": None,
                "stargazers_count": 3,
                "forks_count": 2,
                "open_issues_count": 1,
                "html_url": "https://github.com/octocat/hello",
            },
        )

    async with mock_client(handler) as client:
        info = await HttpGitHubService(client=client, token="").repo_info("octocat", "hello")
    assert (info.stars, info.forks, info.open_issues) == (3, 2, 1)
    assert info.url == "https://github.com/octocat/hello"


@pytest.mark.asyncio
async def test_github_service_http_error() -> None:
    async with mock_client(lambda r: httpx.Response(404)) as client:
        with pytest.raises(ServiceError) as excinfo:
            await HttpGitHubService(client=client, token="").repo_info("a", "b")
    assert excinfo.value.code == "404"


@pytest.mark.asyncio
async def test_wikipedia_service() -> None:
    payload = {
        "title": "Python",
        "extract": "A language.",
        "content_urls": {"desktop": {"page": "https://en.wikipedia.org/wiki/Python"}},
    }
    async with mock_client(lambda r: httpx.Response(200, json=payload)) as client:
        page = await HttpWikipediaService(client=client).summary("Python")
    assert page.url.endswith("/Python")


@pytest.mark.asyncio
async def test_news_service_limits_items() -> None:
    async with mock_client(lambda r: httpx.Response(200, text=RSS)) as client:
        items = await GoogleNewsService(client=client).search("AI", limit=2)
    assert [item.title for item in items] == ["First", "Second"]


@pytest.mark.asyncio
async def test_news_service_zero_limit() -> None:
    async with mock_client(lambda r: httpx.Response(200, text=RSS)) as client:
        assert await GoogleNewsService(client=client).search("AI", limit=0) == []


@pytest.mark.asyncio
async def test_news_service_bad_feed() -> None:
    async with mock_client(lambda r: httpx.Response(200, text="<rss")) as client:
        with pytest.raises(ServiceError):
            await GoogleNewsService(client=client).search("AI", limit=2)


@pytest.mark.asyncio
async def test_social_post_service() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["Authorization"] == "Bearer tok"
        assert json.loads(request.content) == {"text": "hi"}
        return httpx.Response(201, json={"data": {"id": "99", "text": "hi"}})

    async with mock_client(handler) as client:
        result = await HttpSocialPostService("tok", client=client).post("hi")
    assert result.post_id == "99"


@pytest.mark.asyncio
async def test_social_post_failure_surfaces_as_error_result(services: ToolServices) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(403, json={"title": "Forbidden", "detail": "duplicate content"})

    async with mock_client(handler) as client:
        services.social = HttpSocialPostService("tok", client=client)
        registry = build_default_registry(services)
        result = await execute_tool(registry, "twitter-X-post", {"status": "again"})
    assert result.is_error
    assert "duplicate content" in result.text
    assert "403" in result.text


@pytest.mark.asyncio
async def test_offline_post_service() -> None:
    result = await OfflineSocialPostService().post("hello")
    assert result.post_id.isdigit()
    assert result.text == "hello"


@pytest.mark.asyncio
async def test_app_shutdown_closes_service_clients(services: ToolServices) -> None:
    github = HttpGitHubService()
    services.github = github
    client = github._get_client()  # pylint: disable=protected-access
    app = create_app(registry=build_default_registry(services), services=services)

    async with app.router.lifespan_context(app):
        assert not client.is_closed

    assert client.is_closed
