"""CLI entry point for the launch agent."""

import argparse
import json
import logging

from pydantic import ValidationError

from launch_agent.config.loader import get_config_value, load_config
from launch_agent.daemon import AgentDaemon, daemon_status, stop_daemon
from launch_agent.reporting.formatters import format_profiles, format_status_text
from launch_agent.storage.state_document import read_document

DEFAULT_CONFIG = "ops/configs/agent.yaml"


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="launch-agent",
        description="Token launch auction bidding and trading agent",
    )
    parser.add_argument("--config", default=DEFAULT_CONFIG, help="Config YAML path")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    sub = parser.add_subparsers(dest="command")

    run_p = sub.add_parser("run", help="Run the agent in the foreground")
    run_p.add_argument("--live", action="store_true", help="Send real transactions")

    sub.add_parser("stop", help="Stop a running agent")
    sub.add_parser("status", help="Show daemon and strategy status")
    sub.add_parser("profiles", help="List exit profiles")

    config_p = sub.add_parser("config", help="Config operations")
    config_sub = config_p.add_subparsers(dest="config_command")
    config_sub.add_parser("show", help="Display current config")
    get_p = config_sub.add_parser("get", help="Read one config value")
    get_p.add_argument("key", help="Dotted key, e.g. bid.max_attempts")

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 1

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)

    if args.command == "stop":
        return stop_daemon()
    if args.command == "profiles":
        print(format_profiles())
        return 0

    try:
        config = load_config(args.config)
    except ValidationError as e:
        print(f"Invalid config {args.config}:\n{e}")
        return 1

    if args.command == "run":
        return AgentDaemon(config, live=args.live).run()
    elif args.command == "status":
        return _cmd_status(config)
    elif args.command == "config":
        return _cmd_config(config, args)
    else:
        parser.print_help()
        return 1


def _cmd_status(config) -> int:
    status = daemon_status()
    if status.get("alive"):
        print(f"Agent running (pid {status['pid']}, mode {status.get('mode', '?')})")
        if status.get("last_update"):
            print(f"Last heartbeat: {status['last_update']}")
    else:
        print("Agent not running")

    sections = read_document(config.persistence.path)
    if not sections:
        print(f"No saved state at {config.persistence.path}")
        return 0
    print(format_status_text(sections))
    return 0


def _cmd_config(config, args) -> int:
    if args.config_command == "show":
        print(config.model_dump_json(indent=2))
        return 0
    elif args.config_command == "get":
        try:
            value = get_config_value(config, args.key)
        except (KeyError, IndexError, ValueError) as e:
            print(f"Error: {e}")
            return 1
        if hasattr(value, "model_dump"):
            value = value.model_dump(mode="json")
        elif isinstance(value, list):
            value = [v.model_dump(mode="json") if hasattr(v, "model_dump") else v for v in value]
        print(json.dumps(value, indent=2, default=str) if isinstance(value, dict | list) else value)
        return 0
    else:
        print("Use: config show | config get <key>")
        return 1
