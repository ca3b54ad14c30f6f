#!/usr/bin/env python3
"""Mock worker for supervisor tests.

Reads one JSON request per stdin line and answers on stdout with the
__JSON_RPC__ prefix, the same way a real worker script would.

Usage:
    python mock_worker.py [--startup-stdout N] [--startup-stderr N] [--exit-immediately]

Commands (request "command" field):
    ping       -> {"ok": true}
    echo       -> params, re-serialised with ensure_ascii=False
    raw        -> params (a string) written verbatim after the prefix
    logs       -> params["count"] plain stdout lines, then {"ok": true}
    stderr     -> params["count"] stderr lines, then {"ok": true}
    sleep      -> sleeps params["seconds"], then {"slept": seconds}
    silent     -> no answer
    exit       -> exits with params.get("code", 0) without answering
    malformed  -> a prefixed line that is not JSON
    badbytes   -> sleeps params["seconds"], then a prefixed line that is not UTF-8
    pid        -> {"pid": <worker pid>}
"""

from __future__ import annotations

import argparse
import json
import os
import sys
import time

PREFIX = "__JSON_RPC__"


def answer(value) -> None:
    """Write one response frame."""
    print(PREFIX + json.dumps(value, ensure_ascii=False), flush=True)


def log(text: str) -> None:
    """Write a plain stdout line (not a frame)."""
    print(text, flush=True)


def handle(request: dict) -> None:
    command = request.get("command")
    params = request.get("params")

    if command == "ping":
        answer({"ok": True})
    elif command == "echo":
        answer(params)
    elif command == "raw":
        print(PREFIX + params, flush=True)
    elif command == "logs":
        for i in range(params["count"]):
            log(f"log {i}")
        answer({"ok": True})
    elif command == "stderr":
        for i in range(params["count"]):
            print(f"stderr {i}", file=sys.stderr, flush=True)
        answer({"ok": True})
    elif command == "sleep":
        time.sleep(params["seconds"])
        answer({"slept": params["seconds"]})
    elif command == "silent":
        pass
    elif command == "exit":
        code = (params or {}).get("code", 0)
        sys.stdout.flush()
        os._exit(code)
    elif command == "malformed":
        print(PREFIX + "{not json", flush=True)
    elif command == "badbytes":
        time.sleep(params["seconds"])
        sys.stdout.flush()
        sys.stdout.buffer.write(PREFIX.encode() + b"\xff\xfe\n")
        sys.stdout.buffer.flush()
    elif command == "pid":
        answer({"pid": os.getpid()})
    else:
        print(f"unknown command: {command}", file=sys.stderr, flush=True)
        answer({"error": f"unknown command {command}"})


def main() -> None:
    parser = argparse.ArgumentParser(description="Mock worker for testing")
    parser.add_argument("--startup-stdout", type=int, default=0, help="Log lines on stdout at start")
    parser.add_argument("--startup-stderr", type=int, default=0, help="Log lines on stderr at start")
    parser.add_argument("--exit-immediately", action="store_true", help="Exit before reading stdin")
    args = parser.parse_args()

    # Wire format is UTF-8 whatever the locale says
    for stream in (sys.stdin, sys.stdout, sys.stderr):
        stream.reconfigure(encoding="utf-8")

    for i in range(args.startup_stdout):
        log(f"startup {i}")
    for i in range(args.startup_stderr):
        print(f"startup stderr {i}", file=sys.stderr, flush=True)

    if args.exit_immediately:
        sys.exit(0)

    for line in sys.stdin:
        line = line.strip()
        if not line:
            continue
        try:
            request = json.loads(line)
        except json.JSONDecodeError as e:
            print(f"bad request: {e}", file=sys.stderr, flush=True)
            continue
        handle(request)


if __name__ == "__main__":
    main()
