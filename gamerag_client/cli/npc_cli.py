"""
Talk to a GameRAG NPC server from the terminal, the way a game client would.

Usage:
  gamerag-npc health
  gamerag-npc ask --npc guard-north-gate --question "What is your duty?"
  gamerag-npc stream --npc guard-north-gate --question "Tell me about the keep" --delay 30

Environment:
  GAMERAG_SERVER_URL (default http://localhost:5280)
  GAMERAG_API_KEY (optional)
"""

from __future__ import annotations

import argparse
import sys
import time
from typing import List, Optional

from loguru import logger

from gamerag_client.config.settings import get_settings
from gamerag_client.schemas.errors import NpcClientError
from gamerag_client.schemas.npc import NpcAnswer, StreamChunk
from gamerag_client.wrappers.npc_service import NpcDialogueClient


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Ask GameRAG NPCs questions over HTTP.")
    parser.add_argument("--server", help="Server base URL (overrides GAMERAG_SERVER_URL)")
    parser.add_argument("--api-key", help="API key sent as X-API-Key (overrides GAMERAG_API_KEY)")
    parser.add_argument("--verbose", action="store_true", help="Log requests and responses to stderr")

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("health", help="Check whether the server is up")

    for name, help_text in (("ask", "Ask and wait for the full answer"), ("stream", "Ask and print chunks as they arrive")):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("--npc", required=True, help="NPC identifier, e.g. guard-north-gate")
        cmd.add_argument("--question", required=True, help="What the player says")
        cmd.add_argument("--importance", type=float, default=None, help="Routing hint 0.0-1.0 (higher prefers cloud)")

    sub.choices["stream"].add_argument("--delay", type=int, default=0, help="Milliseconds to wait per chunk (typewriter effect)")
    return parser


def _configure_logging(verbose: bool) -> None:
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else "WARNING")


def _print_answer(npc: str, answer: NpcAnswer) -> None:
    print(f'{npc}: "{answer.answer}"')
    print("\n[Metadata]")
    print(f"  Provider: {'Cloud' if answer.from_cloud else 'Local'}")
    print(f"  Response Time: {answer.response_time_ms}ms")
    if answer.sources:
        print(f"  Sources: {', '.join(answer.sources)}")


def _run_stream(client: NpcDialogueClient, args: argparse.Namespace) -> None:
    session = client.ask_stream(args.npc, args.question, args.importance)
    print(f"{args.npc} (streaming): ", end="", flush=True)
    for event in session:
        if isinstance(event, StreamChunk):
            print(event.text, end="", flush=True)
            if args.delay:
                time.sleep(args.delay / 1000)
    print()
    if session.end is not None and session.end.sources:
        print(f"  Sources: {', '.join(session.end.sources)}")


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    _configure_logging(args.verbose)

    overrides = {"log_responses": args.verbose}
    if args.server:
        overrides["server_url"] = args.server.rstrip("/")
    if args.api_key:
        overrides["api_key"] = args.api_key
    settings = get_settings().model_copy(update=overrides)

    with NpcDialogueClient(settings=settings) as client:
        if args.command == "health":
            healthy = client.check_health()
            print(f"Server health: {'OK' if healthy else 'FAILED'}")
            return 0 if healthy else 1

        try:
            if args.command == "ask":
                _print_answer(args.npc, client.ask(args.npc, args.question, args.importance))
            else:
                _run_stream(client, args)
        except NpcClientError as exc:
            print(f"\nError: {exc}", file=sys.stderr)
            return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
