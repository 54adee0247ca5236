#!/usr/bin/env python3
"""
Terminal client: subscribe to market-data channels and print updates.
Reconnection and resubscription are handled by the client itself.
Usage:
  python scripts/stream.py --orderbook BBG000B9XRY4
  python scripts/stream.py --orderbook BBG000B9XRY4 --depth 10
  python scripts/stream.py --candle BBG000B9XRY4 --interval 5min
  python scripts/stream.py --instrument-info BBG000B9XRY4 --token $INVEST_SECRET_TOKEN
"""
import argparse
import asyncio
import json
import signal
import sys

from invest_streaming import ConnectivityEvent, Streaming
from invest_streaming.config import settings
from invest_streaming.utils.logging import setup_logging


def printer(channel: str):
    def show(payload, meta):
        body = json.dumps(payload)
        print(f"[{channel}] {meta.get('serverTime')} {body[:160] + '...' if len(body) > 160 else body}", flush=True)
    return show


async def run(args) -> None:
    streaming = Streaming(url=args.url, secret_token=args.token)
    streaming.on(ConnectivityEvent.OPEN, lambda: print("[CONNECTED]", flush=True))
    streaming.on(ConnectivityEvent.CLOSE, lambda code, reason: print("[DISCONNECT]", code, reason, flush=True))
    streaming.on_streaming_error(lambda payload, meta: print("[ERROR]", payload, file=sys.stderr, flush=True))

    for figi in args.orderbook or []:
        streaming.orderbook(figi, printer(f"orderbook {figi}"), depth=args.depth)
    for figi in args.candle or []:
        streaming.candle(figi, printer(f"candle {figi}"), interval=args.interval)
    for figi in args.instrument_info or []:
        streaming.instrument_info(figi, printer(f"instrument_info {figi}"))

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            pass  # Windows: Ctrl+C raises KeyboardInterrupt instead

    try:
        await stop.wait()
    finally:
        await streaming.stop()


def main():
    p = argparse.ArgumentParser(description="Market-data streaming terminal client")
    p.add_argument("--url", default=settings.INVEST_STREAMING_URL, help="Streaming WebSocket URL")
    p.add_argument("--token", default=settings.INVEST_SECRET_TOKEN, help="API token (default: INVEST_SECRET_TOKEN)")
    p.add_argument("--orderbook", action="append", metavar="FIGI", help="Order book channel (repeat for multiple)")
    p.add_argument("--depth", type=int, default=3, help="Order book depth (1-20)")
    p.add_argument("--candle", action="append", metavar="FIGI", help="Candle channel (repeat for multiple)")
    p.add_argument("--interval", default="1min", help="Candle interval, e.g. 1min, 5min, hour, day")
    p.add_argument("--instrument-info", action="append", metavar="FIGI", help="Instrument info channel")
    args = p.parse_args()

    if not (args.orderbook or args.candle or args.instrument_info):
        p.error("give at least one of --orderbook, --candle, --instrument-info")
    if not args.token:
        print("Warning: no token given, the server will reject the handshake", file=sys.stderr)

    setup_logging()
    try:
        asyncio.run(run(args))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
