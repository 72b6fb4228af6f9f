"""
External services consumed by the built-in tools.

Each service is an abstract contract plus one ``httpx`` implementation.  Tools only see the
contract, so tests swap in fakes or an ``httpx.MockTransport``.
"""

import logging
import random
import xml.etree.ElementTree as ET
from abc import (
    ABC,
    abstractmethod,
)
from typing import (
    List,
    Optional,
)
from urllib.parse import quote

import httpx
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
)

from toolbridge.config import settings

logger = logging.getLogger(__name__)


class ServiceError(RuntimeError):
    """Raised when an external service call fails."""

    def __init__(self, message: str, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.code = code


# ---------------------------------------------------------------------------
# Result models
# ---------------------------------------------------------------------------
class RepoInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    full_name: str
    description: Optional[str] = None
    stars: int = Field(0, alias="stargazers_count")
    forks: int = Field(0, alias="forks_count")
    open_issues: int = Field(0, alias="open_issues_count")
    url: str = Field(..., alias="html_url")


class WikiSummary(BaseModel):
    title: str
    extract: str
    url: str


class NewsItem(BaseModel):
    title: str
    url: str


class PostResult(BaseModel):
    post_id: str
    text: str


# ---------------------------------------------------------------------------
# Contracts
# ---------------------------------------------------------------------------
class GitHubService(ABC):
    @abstractmethod
    async def repo_info(self, owner: str, repo: str) -> RepoInfo:
        """Look up a public repository."""


class WikipediaService(ABC):
    @abstractmethod
    async def summary(self, query: str) -> WikiSummary:
        """Summary of the page best matching *query*."""


class NewsService(ABC):
    @abstractmethod
    async def search(self, topic: str, limit: int) -> List[NewsItem]:
        """Up to *limit* recent headlines for *topic*."""


class SocialPostService(ABC):
    @abstractmethod
    async def post(self, text: str) -> PostResult:
        """Publish *text* and return the new post id."""


# ---------------------------------------------------------------------------
# httpx implementations
# ---------------------------------------------------------------------------
class _HttpService:
    """Shared ``httpx.AsyncClient`` handling for the concrete services."""

    def __init__(self, client: Optional[httpx.AsyncClient] = None) -> None:
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=settings.HTTP_TIMEOUT,
                follow_redirects=True,
                headers={"User-Agent": "toolbridge/0.1"},
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _get(self, url: str, **kwargs) -> httpx.Response:
        try:
            resp = await self._get_client().get(url, **kwargs)
            resp.raise_for_status()
            return resp
        except httpx.HTTPStatusError as exc:
            raise ServiceError(
                f"{exc.response.status_code} {exc.response.reason_phrase}",
                code=str(exc.response.status_code),
            ) from exc
        except httpx.HTTPError as exc:
            raise ServiceError(f"Request to {url} failed: {exc}") from exc


class HttpGitHubService(_HttpService, GitHubService):
    """GitHub REST API v3."""

    BASE_URL = "https://api.github.com"

    def __init__(self, client: Optional[httpx.AsyncClient] = None, token: Optional[str] = None):
        super().__init__(client)
        self._token = token if token is not None else settings.GITHUB_TOKEN

    async def repo_info(self, owner: str, repo: str) -> RepoInfo:
        headers = {"Accept": "application/vnd.github+json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        resp = await self._get(
            f"{self.BASE_URL}/repos/{quote(owner, safe='')}/{quote(repo, safe='')}",
            headers=headers,
        )
        return RepoInfo.model_validate(resp.json())


class HttpWikipediaService(_HttpService, WikipediaService):
    """Wikipedia REST page-summary endpoint."""

    BASE_URL = "https://en.wikipedia.org/api/rest_v1/page/summary"

    async def summary(self, query: str) -> WikiSummary:
        resp = await self._get(f"{self.BASE_URL}/{quote(query, safe='')}")
        data = resp.json()
        try:
            return WikiSummary(
                title=data["title"],
                extract=data.get("extract", ""),
                url=data["content_urls"]["desktop"]["page"],
            )
        except (KeyError, TypeError) as exc:
            raise ServiceError(f"Unexpected Wikipedia response for '{query}'") from exc


class GoogleNewsService(_HttpService, NewsService):
    """Google News RSS search."""

    RSS_URL = "https://news.google.com/rss/search"

    async def search(self, topic: str, limit: int) -> List[NewsItem]:
        resp = await self._get(self.RSS_URL, params={"q": topic})
        try:
            root = ET.fromstring(resp.text)
        except ET.ParseError as exc:
            raise ServiceError(f"Malformed RSS feed for '{topic}'") from exc

        items: List[NewsItem] = []
        for node in root.iterfind("./channel/item"):
            if len(items) >= limit:
                break
            title = (node.findtext("title") or "").strip()
            link = (node.findtext("link") or "").strip()
            if title and link:
                items.append(NewsItem(title=title, url=link))
        return items


class HttpSocialPostService(_HttpService, SocialPostService):
    """X (Twitter) API v2 ``POST /2/tweets`` with a user-context bearer token."""

    POST_URL = "https://api.twitter.com/2/tweets"

    def __init__(self, token: str, client: Optional[httpx.AsyncClient] = None) -> None:
        super().__init__(client)
        self._token = token

    async def post(self, text: str) -> PostResult:
        try:
            resp = await self._get_client().post(
                self.POST_URL,
                json={"text": text},
                headers={"Authorization": f"Bearer {self._token}"},
            )
        except httpx.HTTPError as exc:
            raise ServiceError(f"Request to {self.POST_URL} failed: {exc}") from exc

        if resp.is_error:
            detail = resp.text
            try:
                body = resp.json()
                detail = body.get("detail") or body.get("title") or detail
            except ValueError:
                pass
            raise ServiceError(detail, code=str(resp.status_code))
        return PostResult(post_id=str(resp.json()["data"]["id"]), text=text)


class OfflineSocialPostService(SocialPostService):
    """Stand-in used when no posting credentials are configured."""

    async def post(self, text: str) -> PostResult:
        post_id = str(random.randint(10**17, 10**18 - 1))
        logger.warning("No social posting credentials configured; simulated post %s", post_id)
        return PostResult(post_id=post_id, text=text)


def default_social_service() -> SocialPostService:
    if settings.TWITTER_BEARER_TOKEN:
        return HttpSocialPostService(settings.TWITTER_BEARER_TOKEN)
    return OfflineSocialPostService()
