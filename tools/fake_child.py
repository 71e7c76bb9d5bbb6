#!/usr/bin/env python3
from __future__ import annotations

import argparse
import os
import subprocess
import sys
import time
from pathlib import Path


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Fake child process for runwrap integration tests")
    sub = parser.add_subparsers(dest="subcommand", required=True)

    sub.add_parser("echo", help="copy stdin to stdout")

    emit = sub.add_parser("emit", help="write lines and exit")
    emit.add_argument("--stdout-lines", type=int, default=0)
    emit.add_argument("--stderr-lines", type=int, default=0)
    emit.add_argument("--spam-bytes", type=int, default=0)
    emit.add_argument("--exit-code", type=int, default=0)

    sleep = sub.add_parser("sleep")
    sleep.add_argument("--sec", type=float, default=30.0)

    spawn = sub.add_parser("spawn", help="start a sleeping grandchild and wait")
    spawn.add_argument("--pid-file", type=Path, required=True)
    spawn.add_argument("--sec", type=float, default=30.0)

    flaky = sub.add_parser("flaky", help="fail until called --succeed-on times")
    flaky.add_argument("--counter-file", type=Path, required=True)
    flaky.add_argument("--succeed-on", type=int, default=2)
    flaky.add_argument("--exit-code", type=int, default=1)

    env = sub.add_parser("env", help="print NAME=value for each name")
    env.add_argument("names", nargs="+")

    sub.add_parser("cwd")
    return parser.parse_args()


def _emit(args: argparse.Namespace) -> int:
    for i in range(args.stdout_lines):
        print(f"out {i}", flush=True)
    for i in range(args.stderr_lines):
        print(f"err {i}", file=sys.stderr, flush=True)
    if args.spam_bytes > 0:
        chunk = ("x" * 127 + "\n").encode("utf-8")
        remaining = args.spam_bytes
        while remaining > 0:
            sys.stdout.buffer.write(chunk[: min(len(chunk), remaining)])
            remaining -= len(chunk)
        sys.stdout.flush()
    return args.exit_code


def _spawn(args: argparse.Namespace) -> int:
    grandchild = subprocess.Popen([sys.executable, "-c", f"import time; time.sleep({args.sec})"])
    args.pid_file.write_text(str(grandchild.pid), encoding="utf-8")
    print("spawned", flush=True)
    time.sleep(args.sec)
    return 0


def _flaky(args: argparse.Namespace) -> int:
    count = 0
    if args.counter_file.exists():
        count = int(args.counter_file.read_text(encoding="utf-8") or "0")
    count += 1
    args.counter_file.write_text(str(count), encoding="utf-8")
    print(f"attempt {count}", flush=True)
    if count < args.succeed_on:
        print("flaky failure", file=sys.stderr, flush=True)
        return args.exit_code
    return 0


def main() -> int:
    args = parse_args()
    if args.subcommand == "echo":
        while True:
            chunk = sys.stdin.buffer.read1(65536)
            if not chunk:
                break
            sys.stdout.buffer.write(chunk)
            sys.stdout.flush()
        return 0
    if args.subcommand == "emit":
        return _emit(args)
    if args.subcommand == "sleep":
        time.sleep(args.sec)
        return 0
    if args.subcommand == "spawn":
        return _spawn(args)
    if args.subcommand == "flaky":
        return _flaky(args)
    if args.subcommand == "env":
        for name in args.names:
            value = os.environ.get(name)
            print(f"{name}={value}" if value is not None else f"{name} unset", flush=True)
        return 0
    print(os.getcwd(), flush=True)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
