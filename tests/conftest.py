"""Shared fixtures: a registry backed by fake services and an in-process server."""

from typing import (
    AsyncIterator,
    List,
)

import httpx
import pytest
import pytest_asyncio

from toolbridge.api.app import create_app
from toolbridge.server.session_table import SessionTable
from toolbridge.tools import ToolRegistry
from toolbridge.tools.builtin import (
    ToolServices,
    build_default_registry,
)
from toolbridge.tools.services import (
    GitHubService,
    NewsItem,
    NewsService,
    PostResult,
    RepoInfo,
    ServiceError,
    SocialPostService,
    WikipediaService,
    WikiSummary,
)


class FakeGitHub(GitHubService):
    async def repo_info(self, owner: str, repo: str) -> RepoInfo:
        if repo == "missing":
            raise ServiceError("404 Not Found", code="404")
        return RepoInfo(
            full_name=f"{owner}/{repo}",
            description="A test repository",
            stars=58,
            forks=1,
            open_issues=9,
            url=f"https://github.com/{owner}/{repo}",
        )


class FakeWikipedia(WikipediaService):
    async def summary(self, query: str) -> WikiSummary:
        return WikiSummary(
            title=query, extract=f"{query} is a thing.", url=f"https://en.wikipedia.org/wiki/{query}"
        )


class FakeNews(NewsService):
    async def search(self, topic: str, limit: int) -> List[NewsItem]:
        return [NewsItem(title=f"{topic} story {i}", url=f"https://n.example/{i}") for i in range(limit)]


class FakeSocial(SocialPostService):
    def __init__(self) -> None:
        self.posts: List[str] = []

    async def post(self, text: str) -> PostResult:
        self.posts.append(text)
        return PostResult(post_id="12345", text=text)


@pytest.fixture
def services() -> ToolServices:
    return ToolServices(
        github=FakeGitHub(),
        wikipedia=FakeWikipedia(),
        news=FakeNews(),
        social=FakeSocial(),
        news_limit=3,
    )


@pytest.fixture
def registry(services: ToolServices) -> ToolRegistry:
    return build_default_registry(services)


@pytest.fixture
def table() -> SessionTable:
    return SessionTable(idle_timeout=0)


@pytest_asyncio.fixture
async def http(registry: ToolRegistry, table: SessionTable) -> AsyncIterator[httpx.AsyncClient]:
    app = create_app(registry=registry, table=table)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
