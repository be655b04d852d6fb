from __future__ import annotations

import asyncio
import enum
import logging
import threading
from pathlib import Path
from typing import Iterator, Optional

LOGGER = logging.getLogger("udpbench.endpoints")
MESSAGE_LOGGER_NAME = "udpbench.messages"

Address = tuple[str, int]


def configure_logger(log_path: Path | None = None) -> logging.Logger:
    """Return the per-datagram logger, optionally writing to its own file."""
    logger = logging.getLogger(MESSAGE_LOGGER_NAME)
    logger.setLevel(logging.INFO)
    if log_path is None:
        logger.propagate = True
        return logger

    log_path.parent.mkdir(parents=True, exist_ok=True)
    logger.propagate = False

    handler = logging.FileHandler(log_path, mode="w", encoding="utf-8")
    formatter = logging.Formatter("%(asctime)s %(levelname)s %(message)s")
    handler.setFormatter(formatter)

    for old in list(logger.handlers):
        old.close()
        logger.removeHandler(old)
    logger.addHandler(handler)
    return logger


class SharedCounters:
    """Counters written by every endpoint and read-and-reset by the sampling window."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._received = 0
        self._lost_packets = 0

    def record_received(self, count: int = 1) -> None:
        with self._lock:
            self._received += count

    def record_lost(self, count: int = 1) -> None:
        with self._lock:
            self._lost_packets += count

    def swap_received(self) -> int:
        """Return the received count and reset it to zero in one step."""
        with self._lock:
            value = self._received
            self._received = 0
        return value

    @property
    def received(self) -> int:
        with self._lock:
            return self._received

    @property
    def lost_packets(self) -> int:
        with self._lock:
            return self._lost_packets

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return {"received": self._received, "lost_packets": self._lost_packets}


class EndpointState(enum.Enum):
    LIVE = "live"
    CLOSED = "closed"


class _EndpointProtocol(asyncio.DatagramProtocol):
    def __init__(self, endpoint: "Endpoint") -> None:
        self._endpoint = endpoint

    def connection_made(self, transport: asyncio.BaseTransport) -> None:
        self._endpoint._attach(transport)  # type: ignore[arg-type]

    def datagram_received(self, data: bytes, addr: Address) -> None:
        self._endpoint._on_datagram(data, addr)

    def error_received(self, exc: Exception) -> None:
        self._endpoint._on_error(exc)

    def connection_lost(self, exc: Exception | None) -> None:
        self._endpoint._on_connection_lost(exc)


class Endpoint:
    """One bound datagram socket owned by an :class:`EndpointPool`."""

    def __init__(
        self,
        name: str,
        counters: SharedCounters,
        message_logger: Optional[logging.Logger] = None,
    ) -> None:
        self.name = name
        self._counters = counters
        self._message_logger = message_logger
        self._transport: asyncio.DatagramTransport | None = None
        self._state = EndpointState.CLOSED
        self._errors = 0
        self._send_failures = 0
        self._sending = False
        self._send_error: BaseException | None = None

    @property
    def state(self) -> EndpointState:
        return self._state

    @property
    def is_live(self) -> bool:
        return (
            self._state is EndpointState.LIVE
            and self._transport is not None
            and not self._transport.is_closing()
        )

    @property
    def errors(self) -> int:
        return self._errors

    @property
    def send_failures(self) -> int:
        return self._send_failures

    @property
    def local_address(self) -> Address | None:
        if self._transport is None:
            return None
        return self._transport.get_extra_info("sockname")

    def send(self, payload: bytes, address: Address) -> bool:
        """Queue one datagram; returns False when the transport rejected it."""
        transport = self._transport
        if transport is None or not self.is_live:
            return False
        # sendto() reports socket errors through error_received before returning.
        self._sending = True
        self._send_error = None
        try:
            transport.sendto(payload, address)
        except (OSError, RuntimeError, ValueError) as exc:
            self._send_error = exc
        finally:
            self._sending = False
        if self._send_error is not None:
            self._send_failures += 1
            LOGGER.error("Error sending message from %s: %s", self.name, self._send_error)
            return False
        return True

    def close(self) -> None:
        if self._state is EndpointState.CLOSED and self._transport is None:
            return
        self._state = EndpointState.CLOSED
        transport, self._transport = self._transport, None
        if transport is not None:
            transport.close()

    def _attach(self, transport: asyncio.DatagramTransport) -> None:
        self._transport = transport
        self._state = EndpointState.LIVE

    def _on_datagram(self, data: bytes, addr: Address) -> None:
        self._counters.record_received()
        if self._message_logger is not None:
            self._message_logger.info(
                "%s received: %s from %s:%s",
                self.name,
                data.decode("utf-8", errors="replace"),
                addr[0],
                addr[1],
            )

    def _on_error(self, exc: BaseException) -> None:
        if self._sending:
            # A failed send only loses that datagram; the endpoint stays open.
            self._send_error = exc
            return
        self._errors += 1
        LOGGER.error("Client error on %s: %r", self.name, exc)
        self.close()

    def _on_connection_lost(self, exc: Exception | None) -> None:
        if exc is not None:
            LOGGER.warning("%s lost its transport: %r", self.name, exc)
        self._state = EndpointState.CLOSED
        self._transport = None


class EndpointPool:
    """Opens ``size`` endpoints on ephemeral ports and tears them all down together."""

    def __init__(
        self,
        size: int,
        counters: SharedCounters,
        bind_host: str = "0.0.0.0",
        message_logger: Optional[logging.Logger] = None,
    ) -> None:
        if size <= 0:
            raise ValueError("EndpointPool size must be > 0")
        self._size = size
        self._counters = counters
        self._bind_host = bind_host
        self._message_logger = message_logger
        self._endpoints: list[Endpoint] = []

    @property
    def counters(self) -> SharedCounters:
        return self._counters

    @property
    def live_count(self) -> int:
        return sum(1 for endpoint in self._endpoints if endpoint.is_live)

    def __len__(self) -> int:
        return len(self._endpoints)

    def __iter__(self) -> Iterator[Endpoint]:
        return iter(self._endpoints)

    async def open(self) -> list[Endpoint]:
        loop = asyncio.get_running_loop()
        endpoints = [
            Endpoint(f"Client{idx}", self._counters, self._message_logger)
            for idx in range(self._size)
        ]
        self._endpoints = endpoints
        # Every bind either completes or fails before any burst is sent.
        bound = await asyncio.gather(*(self._bind(loop, endpoint) for endpoint in endpoints))
        failed = bound.count(False)
        if failed:
            LOGGER.warning("%d of %d endpoints failed to bind", failed, self._size)
        return list(endpoints)

    def close(self) -> None:
        for endpoint in self._endpoints:
            endpoint.close()

    async def __aenter__(self) -> "EndpointPool":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.close()
        # Let the transports deliver connection_lost before the next test starts.
        await asyncio.sleep(0)

    async def _bind(self, loop: asyncio.AbstractEventLoop, endpoint: Endpoint) -> bool:
        try:
            await loop.create_datagram_endpoint(
                lambda: _EndpointProtocol(endpoint),
                local_addr=(self._bind_host, 0),
            )
        except OSError as exc:
            endpoint._on_error(exc)
            return False
        return True


__all__ = [
    "Address",
    "Endpoint",
    "EndpointPool",
    "EndpointState",
    "SharedCounters",
    "configure_logger",
]
