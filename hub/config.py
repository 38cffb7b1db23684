"""Command-line and environment configuration for the hub server."""

from __future__ import annotations

import argparse
import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Sequence

from .tracker import DEFAULT_HISTORY_LIMIT


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(slots=True)
class HubConfig:
    host: str = "0.0.0.0"
    ws_port: int = 8765
    http_host: str | None = None
    http_port: int = 8080
    db_path: str = "var/fleet-hub.db"
    seeds_path: str | None = None
    commands_path: str | None = None
    watch: bool = False
    watch_debounce: float = 1.0
    health_interval: float = 30.0
    history_limit: int = DEFAULT_HISTORY_LIMIT
    log_level: str = "INFO"

    @classmethod
    def from_args(cls, args: argparse.Namespace) -> "HubConfig":
        level = "DEBUG" if args.verbose else str(args.log_level).upper()
        return cls(
            host=args.host,
            ws_port=args.ws_port,
            http_host=args.http_host,
            http_port=args.http_port,
            db_path=args.db_path,
            seeds_path=args.seeds or None,
            commands_path=args.commands or None,
            watch=args.watch,
            watch_debounce=args.watch_debounce,
            health_interval=args.health_interval,
            history_limit=args.history_limit,
            log_level=level,
        )

    def load_seeds(self) -> list[dict[str, Any]]:
        return load_seeds(self.seeds_path)


def load_seeds(path: str | Path | None) -> list[dict[str, Any]]:
    """Read discovery seeds: a JSON list of ``{id, name, path, type, ...}`` objects."""
    if not path:
        return []
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(data, list) or not all(isinstance(item, dict) for item in data):
        raise ValueError(f"seed file {path} must contain a JSON list of objects")
    return data


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Fleet hub: registry, build/deploy runner and live event feed")
    parser.add_argument("--host", default=os.getenv("HUB_HOST", "0.0.0.0"), help="Bind address")
    parser.add_argument(
        "--ws-port",
        type=int,
        default=int(os.getenv("HUB_WS_PORT", "8765")),
        help="Live channel (WebSocket) port",
    )
    parser.add_argument("--http-host", default=os.getenv("HUB_HTTP_HOST"), help="HTTP bind address (default: --host)")
    parser.add_argument("--http-port", type=int, default=int(os.getenv("HUB_HTTP_PORT", "8080")), help="HTTP API port")
    parser.add_argument("--db-path", default=os.getenv("HUB_DB_PATH", "var/fleet-hub.db"), help="SQLite registry path")
    parser.add_argument("--seeds", default=os.getenv("HUB_SEEDS", ""), help="JSON file with discovery seeds")
    parser.add_argument("--commands", default=os.getenv("HUB_COMMANDS", ""), help="JSON file with command overrides")
    parser.add_argument(
        "--watch",
        action=argparse.BooleanOptionalAction,
        default=_env_bool("HUB_WATCH"),
        help="Re-analyze systems when their files change",
    )
    parser.add_argument(
        "--watch-debounce",
        type=float,
        default=float(os.getenv("HUB_WATCH_DEBOUNCE", "1.0")),
        help="Seconds of quiet before a changed system is re-analyzed",
    )
    parser.add_argument(
        "--health-interval",
        type=float,
        default=float(os.getenv("HUB_HEALTH_INTERVAL", "30")),
        help="Seconds between health checks",
    )
    parser.add_argument(
        "--history-limit",
        type=int,
        default=int(os.getenv("HUB_HISTORY_LIMIT", str(DEFAULT_HISTORY_LIMIT))),
        help="Finished jobs kept in history",
    )
    parser.add_argument("--log-level", default=os.getenv("HUB_LOG_LEVEL", "INFO"), help="Logging level")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)
