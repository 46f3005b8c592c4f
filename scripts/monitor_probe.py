#!/usr/bin/env python3
"""Passive probe for a live operation event stream.

Connects to an SSE or MQTT endpoint, prints every envelope as it arrives and
keeps a running progress table.  Use it to check what a server actually
pushes and how often.

    OPMON_ENDPOINT=http://localhost:3000/admin/api/logs/stream python scripts/monitor_probe.py
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import sys
import time
from dataclasses import dataclass
from pathlib import Path

# Allow running from repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from pyopmon import (  # noqa: E402
    ConnectionStatus,
    Envelope,
    LiveMonitor,
    MonitorConfig,
    OpmonConfigError,
    ProgressEntry,
)
from pyopmon._redact import redact_for_log, redact_url  # noqa: E402


@dataclass
class ProbeStats:
    started_at: float
    total_messages: int = 0
    first_message_at: float | None = None
    last_message_at: float | None = None

    def on_message(self, now: float) -> float | None:
        previous = self.last_message_at
        self.total_messages += 1
        if self.first_message_at is None:
            self.first_message_at = now
        self.last_message_at = now
        return None if previous is None else now - previous


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Passive probe for a live operation event stream.",
    )
    parser.add_argument(
        "--endpoint",
        default=None,
        help="Event stream URL (http[s]:// for SSE, mqtt[s]:// for MQTT). Defaults to OPMON_ENDPOINT.",
    )
    parser.add_argument(
        "--duration",
        type=int,
        default=0,
        help="Maximum runtime in seconds (0 = run until Ctrl+C).",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Pretty-print envelope JSON.",
    )
    parser.add_argument(
        "--progress",
        action="store_true",
        help="Print the progress entry after each lifecycle event.",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logs.",
    )
    return parser.parse_args()


def _print_summary(stats: ProbeStats, progress: dict[str, ProgressEntry]) -> None:
    runtime = time.time() - stats.started_at
    print("[probe] Summary")
    print(f"[probe]   runtime_s      : {runtime:.1f}")
    print(f"[probe]   total_messages : {stats.total_messages}")
    if stats.last_message_at is not None:
        last_message = time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(stats.last_message_at))
        print(f"[probe]   last_message   : {last_message}")
    for operation_id, entry in sorted(progress.items()):
        print(f"[probe]   {operation_id}: {entry.family} {entry.status} {entry.percent:.1f}%")


async def _run(config: MonitorConfig, args: argparse.Namespace) -> int:
    stats = ProbeStats(started_at=time.time())

    def on_connection(status: ConnectionStatus) -> None:
        suffix = f" error={status.last_error}" if status.last_error else ""
        print(f"[probe] connection={status.state} retry={status.retry_count}{suffix}")

    def on_envelope(envelope: Envelope) -> None:
        now = time.time()
        delta = stats.on_message(now)
        gap_text = "first" if delta is None else f"{delta:.1f}s"
        print(f"[probe] msg#{stats.total_messages} type={envelope.type} gap={gap_text}")
        body = redact_for_log(envelope.data)
        if args.json:
            print(json.dumps(body, indent=2, ensure_ascii=False, sort_keys=True))
        else:
            print(json.dumps(body, ensure_ascii=False, sort_keys=True))

    def on_progress(operation_id: str, entry: ProgressEntry | None) -> None:
        if entry is None:
            print(f"[probe] progress {operation_id}: removed")
        else:
            print(f"[probe] progress {operation_id}: {json.dumps(entry.to_dict(), sort_keys=True)}")

    print(f"[probe] Connecting to {redact_url(config.endpoint)}")
    async with LiveMonitor(config, on_connection_change=on_connection) as monitor:
        monitor.subscribe("*", on_envelope)
        if args.progress:
            monitor.progress.on_change(on_progress)
        try:
            if args.duration > 0:
                await asyncio.sleep(args.duration)
                print(f"[probe] Reached --duration={args.duration}s, stopping.")
            else:
                await asyncio.Event().wait()
        finally:
            _print_summary(stats, monitor.progress.snapshot())
    return 0


def _main() -> int:
    args = _parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    overrides = {"endpoint": args.endpoint} if args.endpoint else {}
    try:
        config = MonitorConfig.from_env(**overrides)
    except OpmonConfigError as exc:
        print(f"[probe] {exc}", file=sys.stderr)
        return 2

    with contextlib.suppress(KeyboardInterrupt):
        return asyncio.run(_run(config, args))
    return 0


if __name__ == "__main__":
    raise SystemExit(_main())
