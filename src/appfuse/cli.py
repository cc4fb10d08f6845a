from __future__ import annotations

import argparse
import json
import logging
from dataclasses import asdict

from .bench import run_benchmark
from .constants import DEFAULT_ATTR_TIMEOUT, DEFAULT_ENTRY_TIMEOUT, MAX_HANDLES, MAX_READ
from .device import FuseDevice
from .engine import EngineConfig, ProtocolEngine
from .loop import IOLoop, SessionEnd
from .provider import DirectoryProvider

EXIT_CODES = {
    SessionEnd.CLEAN: 0,
    SessionEnd.DEVICE_LOST: 1,
    SessionEnd.NEGOTIATION_FAILED: 2,
}


def cmd_serve(args: argparse.Namespace) -> int:
    config = EngineConfig(
        max_handles=args.max_handles,
        attr_timeout=args.attr_timeout,
        entry_timeout=args.entry_timeout,
    )
    engine = ProtocolEngine(DirectoryProvider(args.root), config)
    with FuseDevice.from_fd(args.fd) as device:
        loop = IOLoop(device, engine)
        end = loop.run()

    payload = {
        "role": "serve",
        "end": end.value,
        "requests": loop.stats.requests,
        "replies": loop.stats.replies,
        "dropped_frames": loop.stats.dropped_frames,
        "read_errors": loop.stats.read_errors,
        "write_errors": loop.stats.write_errors,
        "seconds": loop.stats.duration_s,
    }
    print(json.dumps(payload, indent=2) if args.json else payload)
    return EXIT_CODES[end]


def cmd_bench(args: argparse.Namespace) -> int:
    r = run_benchmark(size_bytes=args.size_bytes, read_size=args.read_size)
    payload = {"role": "bench", **asdict(r)}
    print(json.dumps(payload, indent=2) if args.json else payload)
    return 0


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(prog="appfuse", description="Read-only FUSE protocol server.")
    p.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
    )
    sub = p.add_subparsers(dest="cmd", required=True)

    serve = sub.add_parser("serve", help="serve files over an already mounted fuse descriptor")
    serve.add_argument("--fd", type=int, required=True, help="open /dev/fuse descriptor")
    serve.add_argument("--root", required=True, help="directory holding files named by node id")
    serve.add_argument("--max-handles", type=int, default=MAX_HANDLES)
    serve.add_argument("--attr-timeout", type=int, default=DEFAULT_ATTR_TIMEOUT)
    serve.add_argument("--entry-timeout", type=int, default=DEFAULT_ENTRY_TIMEOUT)
    serve.add_argument("--json", action="store_true")
    serve.set_defaults(func=cmd_serve)

    bench = sub.add_parser("bench", help="loopback benchmark over a socket pair")
    bench.add_argument("--size-bytes", type=int, default=5_000_000)
    bench.add_argument("--read-size", type=int, default=MAX_READ)
    bench.add_argument("--json", action="store_true")
    bench.set_defaults(func=cmd_bench)

    args = p.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(levelname)s] %(message)s",
    )
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())
