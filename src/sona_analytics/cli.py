#!/usr/bin/env python3
"""
CLI tool for inspecting and draining a local analytics queue.

Usage:
    sona-analytics status
    sona-analytics peek -n 5
    sona-analytics track app_open -p screen=home -p build=42
    sona-analytics --collector-url https://collector.example.com/event/ flush
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any

from colorama import Fore, Style, init as colorama_init

from .client import AnalyticsClient
from .config import AnalyticsConfig
from .delivery.base import OutcomeStatus
from .session import NO_SESSION


OUTCOME_COLORS = {
    OutcomeStatus.SUCCESS: Fore.GREEN,
    OutcomeStatus.RETRYABLE_FAILURE: Fore.YELLOW,
    OutcomeStatus.FATAL_FAILURE: Fore.RED,
}


def colorize(text: str, color: str) -> str:
    return f"{color}{text}{Style.RESET_ALL}"


def print_json(data: Any, indent: int = 2) -> None:
    print(json.dumps(data, indent=indent, default=str))


def parse_properties(pairs: list[str]) -> dict[str, Any]:
    """Parse key=value pairs; values that parse as JSON keep their type."""
    properties: dict[str, Any] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise ValueError(f"Expected key=value, got {pair!r}")
        try:
            properties[key] = json.loads(value)
        except ValueError:
            properties[key] = value
    return properties


def load_config(args) -> AnalyticsConfig:
    config = AnalyticsConfig.from_yaml(args.config) if args.config else AnalyticsConfig()
    if args.db:
        config.storage.db_path = args.db
    if args.collector_url:
        config.delivery.collector_url = args.collector_url
    return config


def cmd_status(client: AnalyticsClient, args) -> int:
    print(colorize("\nQueue:", Style.BRIGHT))
    print(f"  Database: {client.config.storage.db_path}")
    print(f"  Pending events: {client.pending_count}")

    print(colorize("\nSession:", Style.BRIGHT))
    if client.session_id == NO_SESSION:
        print(f"  {colorize('no active session', Style.DIM)}")
    else:
        print(f"  Session id: {client.session_id}")

    print(colorize("\nDelivery:", Style.BRIGHT))
    if client.store_only:
        print(f"  {colorize('store-only (no valid collector configured)', Fore.YELLOW)}")
    else:
        print(f"  Collector: {client.config.delivery.collector_url or client.config.delivery.type}")
    return 0


def cmd_peek(client: AnalyticsClient, args) -> int:
    records = client.store.peek_batch(args.limit)
    if not records:
        print(colorize("Queue is empty", Style.DIM))
        return 0
    for record in records:
        print(colorize(f"#{record.id}", Fore.CYAN))
        print_json(record.payload)
    return 0


def cmd_track(client: AnalyticsClient, args) -> int:
    try:
        properties = parse_properties(args.property)
    except ValueError as e:
        print(colorize(f"Error: {e}", Fore.RED), file=sys.stderr)
        return 2

    if not client.track(args.event, properties):
        print(colorize("Event was dropped, see log", Fore.RED), file=sys.stderr)
        return 1
    print(f"Queued {colorize(args.event, Fore.GREEN)} ({client.pending_count} pending)")
    return 0


def cmd_flush(client: AnalyticsClient, args) -> int:
    if client.store_only:
        print(colorize("No valid collector configured, nothing sent", Fore.RED), file=sys.stderr)
        return 1

    outcomes = client.coordinator.drain(manual=True)
    for outcome in outcomes:
        color = OUTCOME_COLORS[outcome.status]
        line = outcome.status.value
        if outcome.reason:
            line += f": {outcome.reason}"
        print(colorize(line, color))

    stats = client.coordinator.stats
    print(
        f"\nSent {stats['events_sent']} events in {stats['batches_sent']} batches, "
        f"dropped {stats['events_dropped']}, {client.pending_count} still pending"
    )
    failed = any(o.status == OutcomeStatus.RETRYABLE_FAILURE for o in outcomes)
    return 1 if failed else 0


COMMANDS = {
    "status": cmd_status,
    "peek": cmd_peek,
    "track": cmd_track,
    "flush": cmd_flush,
}


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Inspect and drain the local analytics queue",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument("--config", help="YAML configuration file")
    parser.add_argument("--db", help="Override the event database path")
    parser.add_argument("--collector-url", help="Override the collector URL")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    subparsers.add_parser("status", help="Show queue and session state")

    peek_parser = subparsers.add_parser("peek", help="Show the oldest pending events")
    peek_parser.add_argument("-n", "--limit", type=int, default=10, help="Number of events")

    track_parser = subparsers.add_parser("track", help="Queue an event")
    track_parser.add_argument("event", help="Event name")
    track_parser.add_argument(
        "-p", "--property",
        action="append",
        default=[],
        help="Event property as key=value (repeatable)",
    )

    subparsers.add_parser("flush", help="Deliver all pending events now")

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    colorama_init()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    client = AnalyticsClient(config=load_config(args))
    try:
        return COMMANDS[args.command](client, args)
    finally:
        client.shutdown(flush=False)


if __name__ == "__main__":
    sys.exit(main())
