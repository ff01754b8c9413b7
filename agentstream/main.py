"""Terminal entrypoint — watch or start an agent session and print its events."""

import argparse
import asyncio
import logging
import sys

from agentstream.config import settings
from agentstream.errors import AgentStreamError, GitInitRequiredError
from agentstream.schemas.chat import SessionEvent
from agentstream.schemas.session import SessionResumeMode
from agentstream.services.session_client import SessionClient

# ── Logging setup ────────────────────────────────────────────────────
logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)-8s [%(name)s] %(message)s",
    datefmt="%H:%M:%S",
)

logger = logging.getLogger(__name__)


def _print_event(event: SessionEvent) -> None:
    match event.type:
        case "output" | "delta":
            if event.metadata and event.metadata.get("snapshot"):
                print(f"\n[catch-up {event.message_id}] {event.content}", flush=True)
            elif event.content:
                print(event.content, end="", flush=True)
        case "message":
            print(flush=True)
        case "user_message":
            print(f"\n> {event.content}", flush=True)
        case "tool_use":
            print(f"\n[tool] {event.content}", flush=True)
        case "tool_blocked":
            print(f"\n[blocked] {event.content}", flush=True)
        case "approval_required":
            req = event.approval
            if req is not None:
                print(f"\n[approval {req.id}] {req.tool_name} ({req.category}) until {req.timeout_at:%H:%M:%S}", flush=True)
        case "status" | "connection":
            print(f"\n[{event.type}] {event.content}", flush=True)
        case "error":
            print(f"\n[error] {event.content}", file=sys.stderr, flush=True)


async def _follow(client: SessionClient) -> None:
    async for event in client.connection.stream_events():
        _print_event(event)


async def _watch(args: argparse.Namespace) -> int:
    async with SessionClient(args.task) as client:
        follower = asyncio.create_task(_follow(client))
        await client.attach(args.session_id)
        for msg in client.messages:
            print(f"{msg.role}: {msg.content}")
        await follower
    return 0


async def _start(args: argparse.Namespace) -> int:
    async with SessionClient(args.task_id) as client:
        follower = asyncio.create_task(_follow(client))
        try:
            response = await client.start(SessionResumeMode(args.mode), args.prompt)
        except GitInitRequiredError:
            print("The task's working directory must be a git repository first.", file=sys.stderr)
            follower.cancel()
            return 2
        logger.info("Session %s started", response.session.id)
        await follower
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="agentstream", description=__doc__)
    sub = parser.add_subparsers(dest="command", required=True)

    watch = sub.add_parser("watch", help="attach to a running session")
    watch.add_argument("session_id")
    watch.add_argument("--task", required=True, help="task the session belongs to")
    watch.set_defaults(handler=_watch)

    start = sub.add_parser("start", help="start a new session for a task")
    start.add_argument("task_id")
    start.add_argument("--mode", choices=[m.value for m in SessionResumeMode], default=SessionResumeMode.RETRY.value)
    start.add_argument("--prompt")
    start.set_defaults(handler=_start)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        return asyncio.run(args.handler(args))
    except AgentStreamError as exc:
        logger.error("%s", exc)
        return 1
    except KeyboardInterrupt:
        return 130
