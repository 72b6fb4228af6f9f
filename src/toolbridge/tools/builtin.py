"""Built-in tools exposed by the toolbridge server."""

import logging
from dataclasses import (
    dataclass,
    field,
)
from typing import (
    Annotated,
    List,
    Optional,
)

from pydantic import Field

from toolbridge.config import settings
from toolbridge.core.schema import ToolResult
from toolbridge.tools import ToolRegistry
from toolbridge.tools.services import (
    GitHubService,
    GoogleNewsService,
    HttpGitHubService,
    HttpWikipediaService,
    NewsService,
    ServiceError,
    SocialPostService,
    WikipediaService,
    default_social_service,
)

logger = logging.getLogger(__name__)


@dataclass
class ToolServices:
    """External collaborators used by the built-in tools."""

    github: GitHubService = field(default_factory=HttpGitHubService)
    wikipedia: WikipediaService = field(default_factory=HttpWikipediaService)
    news: NewsService = field(default_factory=GoogleNewsService)
    social: SocialPostService = field(default_factory=default_social_service)
    news_limit: int = field(default_factory=lambda: settings.NEWS_MAX_ITEMS)

    async def aclose(self) -> None:
        """Release the HTTP clients held by the services."""
        for service in (self.github, self.wikipedia, self.news, self.social):
            close = getattr(service, "aclose", None)
            if close is not None:
                await close()


def _format_number(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else repr(value)


def register_builtin_tools(registry: ToolRegistry, services: Optional[ToolServices] = None) -> None:
    """Register every built-in tool into *registry*."""
    services = services or ToolServices()

    @registry.tool(
        "print-menu",
        "Prints what the server can do with the available tools (apart from printing this menu)",
    )
    async def print_menu(
        items: Annotated[List[str], Field(description="List of tool descriptions to display")],
        title: Annotated[Optional[str], Field(description="Optional title for the menu")] = None,
    ) -> ToolResult:
        header = f"{title}\n\n" if title else ""
        menu = "\n".join(f"({index}) {item}" for index, item in enumerate(items, start=1))
        return ToolResult.from_text(f"{header}{menu}")

    @registry.tool("news-by-topic", "Fetches recent news headlines for a given topic using Google News")
    async def news_by_topic(
        topic: Annotated[
            str, Field(description="The topic to search news for (e.g., AI, economy, cricket)")
        ],
    ) -> ToolResult:
        try:
            items = await services.news.search(topic, services.news_limit)
        except ServiceError as exc:
            logger.error("News fetch error: %s", exc)
            return ToolResult.error("Failed to retrieve news. Please try again later.")

        if not items:
            return ToolResult.from_text(f'No recent news found for topic: "{topic}".')
        lines = [f"[{i}] {item.title} - {item.url}" for i, item in enumerate(items, start=1)]
        return ToolResult.from_text(f'Top News for "{topic}":\n\n' + "\n".join(lines))

    @registry.tool("adder", "Add two numbers together")
    async def adder(
        a: Annotated[float, Field(description="The first number")],
        b: Annotated[float, Field(description="The second number")],
    ) -> ToolResult:
        logger.info("Adding %s and %s", a, b)
        return ToolResult.from_text(
            f"Result: The sum of {_format_number(a)} and {_format_number(b)} "
            f"is {_format_number(a + b)}."
        )

    @registry.tool("twitter-X-post", "Create and post a tweet on X formally known as Twitter")
    async def twitter_post(
        status: Annotated[str, Field(description="The content of the tweet")],
    ) -> ToolResult:
        logger.info("Creating post with status: %s", status)
        try:
            result = await services.social.post(status)
        except ServiceError as exc:
            logger.error("Error posting to X: %s (code=%s)", exc, exc.code)
            suffix = f" (Code: {exc.code})" if exc.code else ""
            return ToolResult.error(f"Error posting to X: {exc}{suffix}")
        return ToolResult.from_text(
            f'Tweet sent successfully: {result.post_id}\nContent: "{result.text}"'
        )

    @registry.tool("wikipedia-search", "Search Wikipedia and return the summary of the top result")
    async def wikipedia_search(
        query: Annotated[str, Field(description="The search term for Wikipedia")],
    ) -> ToolResult:
        logger.info("Searching Wikipedia for: %s", query)
        try:
            page = await services.wikipedia.summary(query)
        except ServiceError as exc:
            logger.error("Wikipedia API error: %s", exc)
            return ToolResult.error(f'Failed to fetch Wikipedia summary for "{query}".')
        return ToolResult.from_text(
            f"{page.title}\n\n{page.extract}\n\nRead more on Wikipedia: {page.url}"
        )

    @registry.tool("github-repo-info", "Fetch information about a public GitHub repository")
    async def github_repo_info(
        owner: Annotated[str, Field(description="GitHub username or organization")],
        repo: Annotated[str, Field(description="Repository name")],
    ) -> ToolResult:
        try:
            info = await services.github.repo_info(owner, repo)
        except ServiceError as exc:
            logger.error("GitHub fetch error: %s", exc)
            return ToolResult.error(f"Failed to fetch repository info for {owner}/{repo}")
        return ToolResult.from_text(
            f"Repository Name: {info.full_name}\n\n"
            f"Description: {info.description or 'No description'}\n"
            f"Stars: {info.stars}\n"
            f"Forks: {info.forks}\n"
            f"Open Issues: {info.open_issues}\n"
            f"Repository Link: {info.url}"
        )


def build_default_registry(services: Optional[ToolServices] = None) -> ToolRegistry:
    """Registry holding the built-in tools, frozen and ready to serve."""
    registry = ToolRegistry()
    register_builtin_tools(registry, services)
    return registry.freeze()
