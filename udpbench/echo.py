"""
Local UDP reflector used as a benchmark subject.

In ``echo`` mode every datagram goes straight back to its sender. In
``broadcast`` mode it is relayed to every client address seen so far, which
mirrors a chat-style fan-out server.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
import threading

LOGGER = logging.getLogger("udpbench.echo")

MODES = ("echo", "broadcast")


class _ReflectorProtocol(asyncio.DatagramProtocol):
    def __init__(self, server: "EchoServer") -> None:
        self._server = server
        self.transport: asyncio.DatagramTransport | None = None

    def connection_made(self, transport: asyncio.BaseTransport) -> None:
        self.transport = transport  # type: ignore[assignment]

    def datagram_received(self, data: bytes, addr: tuple[str, int]) -> None:
        if not data or self.transport is None:
            return
        if self._server.mode == "broadcast":
            self._server._clients.add(addr)
            recipients = list(self._server._clients)
        else:
            recipients = [addr]
        for recipient in recipients:
            self.transport.sendto(data, recipient)
        self._server._record_sent(len(recipients))

    def error_received(self, exc: Exception) -> None:
        LOGGER.warning("Reflector error: %r", exc)


class EchoServer:
    """Asyncio UDP reflector with a per-second sent counter."""

    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = 0,
        mode: str = "echo",
        report_interval_s: float | None = None,
    ) -> None:
        if mode not in MODES:
            raise ValueError(f"Unknown reflector mode: {mode!r}")
        self.mode = mode
        self._host = host
        self._port = port
        self._report_interval_s = report_interval_s
        self._transport: asyncio.DatagramTransport | None = None
        self._report_task: asyncio.Task | None = None
        self._clients: set[tuple[str, int]] = set()
        self._lock = threading.Lock()
        self._sent_since_report = 0
        self.total_sent = 0

    @property
    def address(self) -> tuple[str, int]:
        if self._transport is None:
            raise RuntimeError("EchoServer is not started")
        host, port = self._transport.get_extra_info("sockname")[:2]
        return host, port

    async def start(self) -> tuple[str, int]:
        loop = asyncio.get_running_loop()
        transport, _ = await loop.create_datagram_endpoint(
            lambda: _ReflectorProtocol(self),
            local_addr=(self._host, self._port),
        )
        self._transport = transport  # type: ignore[assignment]
        if self._report_interval_s:
            self._report_task = asyncio.create_task(self._report_loop(self._report_interval_s))
        LOGGER.info("Reflector (%s) listening on %s:%d", self.mode, *self.address)
        return self.address

    async def close(self) -> None:
        if self._report_task is not None:
            self._report_task.cancel()
            try:
                await self._report_task
            except asyncio.CancelledError:
                pass
            self._report_task = None
        if self._transport is not None:
            self._transport.close()
            self._transport = None

    async def __aenter__(self) -> "EchoServer":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def _record_sent(self, count: int) -> None:
        with self._lock:
            self._sent_since_report += count
            self.total_sent += count

    async def _report_loop(self, interval_s: float) -> None:
        while True:
            await asyncio.sleep(interval_s)
            with self._lock:
                sent, self._sent_since_report = self._sent_since_report, 0
            LOGGER.info("Messages sent per second: %d", round(sent / interval_s))


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="UDP reflector for udpbench")
    parser.add_argument("--host", default=os.environ.get("ECHO_HOST", "0.0.0.0"))
    parser.add_argument("--port", type=int, default=int(os.environ.get("PORT", "5001")))
    parser.add_argument(
        "--mode",
        choices=MODES,
        default=os.environ.get("ECHO_MODE", "echo"),
        help="echo back to the sender or relay to every known client",
    )
    parser.add_argument(
        "--log-level",
        default=os.environ.get("ECHO_LOG_LEVEL", "INFO"),
        help="Logging level",
    )
    return parser.parse_args(argv)


async def serve(host: str, port: int, mode: str) -> None:
    async with EchoServer(host, port, mode=mode, report_interval_s=1.0):
        await asyncio.Event().wait()


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    try:
        asyncio.run(serve(args.host, args.port, args.mode))
    except KeyboardInterrupt:
        print("stopping reflector", file=sys.stderr)
    return 0


if __name__ == "__main__":
    sys.exit(main())
