"""CLI chat client for the toolbridge server."""

from __future__ import annotations

import asyncio
import logging
from typing import Tuple

from toolbridge.agent.agent_loop import (
    AgentTurnError,
    build_agent,
)
from toolbridge.agent.planner_interface import (
    describe_planner,
    load_planner,
)
from toolbridge.client.mcp_client import (
    McpClient,
    McpClientError,
)
from toolbridge.common import (
    AnsiColors,
    colored_print,
)
from toolbridge.core.schema import ConversationHistory

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# CLI Client
# ---------------------------------------------------------------------------
def get_user_message() -> Tuple[str, bool]:
    """
    Get a message from the user via standard input.

    Returns:
        Tuple of (user_input, success_flag)
        The success_flag is False if input couldn't be read (e.g., Ctrl+C)
    """
    try:
        user_input = input().strip()
        return user_input, True
    except (EOFError, KeyboardInterrupt):
        return "", False


async def chat(server_url: str | None = None) -> None:
    """Connect to the server and run the chat shell until the user quits."""
    planner = load_planner()
    client = McpClient(server_url)
    try:
        await client.connect()
        agent = await build_agent(planner, client)
    except McpClientError as exc:
        colored_print(f"Failed to connect to the tool server: {exc}", AnsiColors.RED)
        await client.close()
        return

    history = ConversationHistory()
    colored_print(
        f"\ntoolbridge shell [{describe_planner(planner)}, {len(agent.tools)} tools] - "
        "type 'exit' or 'quit' (or Ctrl+C) to exit",
        AnsiColors.GREEN,
    )
    try:
        while True:
            colored_print("\nYou: ", AnsiColors.BLUE, end="")
            user_msg, ok = await asyncio.to_thread(get_user_message)
            if not ok:
                break  # Exit if user input couldn't be retrieved (e.g., Ctrl+C)
            if not user_msg:
                continue
            if user_msg.lower() in {"exit", "quit"}:
                break

            try:
                reply = await agent.turn(history, user_msg)
            except AgentTurnError as exc:
                colored_print(f"{exc}", AnsiColors.RED)
                continue
            colored_print(reply, AnsiColors.YELLOW)

            try:
                messages = await client.pull_messages()
            except McpClientError as exc:
                logger.warning("Could not pull server messages: %s", exc)
                messages = []
            for message in messages:
                params = message.get("params", {})
                logger.debug("Server message: %s", message)
                if message.get("method") == "notifications/message":
                    colored_print(f"[{params.get('level')}] {params.get('data')}", AnsiColors.RED)
    finally:
        await client.close()


def run_cli(server_url: str | None = None) -> None:
    """Run the CLI client that communicates with the tool server."""
    asyncio.run(chat(server_url))


if __name__ == "__main__":
    run_cli()
