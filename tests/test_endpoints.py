import asyncio
import logging
import socket

import pytest

from udpbench.echo import EchoServer
from udpbench.endpoints import (
    EndpointPool,
    EndpointState,
    SharedCounters,
    configure_logger,
)


pytestmark = [pytest.mark.asyncio]


async def wait_until(predicate, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() >= deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.005)


class TestSharedCounters:
    async def test_swap_resets_received(self):
        counters = SharedCounters()
        counters.record_received()
        counters.record_received(4)
        assert counters.swap_received() == 5
        assert counters.received == 0
        assert counters.swap_received() == 0

    async def test_lost_packets_accumulate(self):
        counters = SharedCounters()
        counters.record_lost()
        counters.record_lost(2)
        assert counters.lost_packets == 3
        assert counters.snapshot() == {"received": 0, "lost_packets": 3}


class TestEndpointPool:
    async def test_open_binds_every_endpoint(self):
        pool = EndpointPool(4, SharedCounters(), bind_host="127.0.0.1")
        endpoints = await pool.open()
        try:
            assert len(endpoints) == 4
            assert all(endpoint.is_live for endpoint in endpoints)
            assert pool.live_count == 4
            ports = {endpoint.local_address[1] for endpoint in endpoints}
            assert len(ports) == 4
            assert [endpoint.name for endpoint in endpoints] == [
                "Client0",
                "Client1",
                "Client2",
                "Client3",
            ]
        finally:
            pool.close()

    async def test_close_is_idempotent(self):
        pool = EndpointPool(3, SharedCounters(), bind_host="127.0.0.1")
        endpoints = await pool.open()
        pool.close()
        pool.close()
        await asyncio.sleep(0)
        assert all(endpoint.state is EndpointState.CLOSED for endpoint in endpoints)
        assert pool.live_count == 0

    async def test_error_closes_only_that_endpoint(self, caplog):
        pool = EndpointPool(3, SharedCounters(), bind_host="127.0.0.1")
        endpoints = await pool.open()
        try:
            with caplog.at_level(logging.ERROR, logger="udpbench.endpoints"):
                endpoints[0]._on_error(OSError("network unreachable"))
            assert not endpoints[0].is_live
            assert endpoints[0].errors == 1
            assert endpoints[1].is_live and endpoints[2].is_live
            assert pool.live_count == 2
            assert "Client0" in caplog.text
        finally:
            pool.close()
            # Closing an endpoint already closed by its error handler is a no-op.
            endpoints[0].close()

    async def test_send_on_closed_endpoint_is_rejected(self):
        pool = EndpointPool(1, SharedCounters(), bind_host="127.0.0.1")
        (endpoint,) = await pool.open()
        endpoint.close()
        assert endpoint.send(b"hello", ("127.0.0.1", 9)) is False

    async def test_refused_send_fails_only_that_datagram(self, caplog):
        counters = SharedCounters()
        pool = EndpointPool(1, counters, bind_host="0.0.0.0")
        (endpoint,) = await pool.open()
        try:
            with caplog.at_level(logging.ERROR, logger="udpbench.endpoints"):
                assert endpoint.send(b"hello", ("255.255.255.255", 5001)) is False
            assert endpoint.is_live
            assert endpoint.errors == 0
            assert endpoint.send_failures == 1
            assert "Error sending message from Client0" in caplog.text

            async with EchoServer("127.0.0.1", 0) as server:
                assert endpoint.send(b"after", server.address) is True
                await wait_until(lambda: counters.received >= 1)
        finally:
            pool.close()

    async def test_error_outside_send_still_closes(self):
        pool = EndpointPool(1, SharedCounters(), bind_host="127.0.0.1")
        (endpoint,) = await pool.open()
        endpoint.send(b"hello", ("127.0.0.1", 9))
        endpoint._on_error(ConnectionRefusedError("port unreachable"))
        assert not endpoint.is_live
        assert endpoint.errors == 1
        assert endpoint.send_failures == 0
        pool.close()

    async def test_bind_failure_is_absorbed(self):
        pool = EndpointPool(2, SharedCounters(), bind_host="203.0.113.77")
        endpoints = await pool.open()
        assert len(endpoints) == 2
        assert pool.live_count == 0
        assert all(endpoint.errors == 1 for endpoint in endpoints)
        pool.close()

    async def test_inbound_datagrams_increment_counter(self):
        counters = SharedCounters()
        async with EndpointPool(2, counters, bind_host="127.0.0.1") as pool:
            sender = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
            try:
                for endpoint in pool:
                    for _ in range(3):
                        sender.sendto(b"ping", endpoint.local_address)
                await wait_until(lambda: counters.received == 6)
            finally:
                sender.close()

    async def test_message_logging(self, caplog):
        counters = SharedCounters()
        logger = configure_logger()
        async with EndpointPool(
            1, counters, bind_host="127.0.0.1", message_logger=logger
        ) as pool:
            (endpoint,) = list(pool)
            sender = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
            try:
                with caplog.at_level(logging.INFO, logger="udpbench.messages"):
                    sender.sendto(b"kangaroo", endpoint.local_address)
                    await wait_until(lambda: counters.received >= 1)
            finally:
                sender.close()
        assert "Client0 received: kangaroo" in caplog.text

    async def test_message_log_file(self, tmp_path):
        log_path = tmp_path / "logs" / "messages.log"
        logger = configure_logger(log_path)
        try:
            logger.info("Client0 received: zoo from 127.0.0.1:5001")
            for handler in logger.handlers:
                handler.flush()
            assert "zoo" in log_path.read_text(encoding="utf-8")
        finally:
            for handler in list(logger.handlers):
                handler.close()
                logger.removeHandler(handler)
            configure_logger(None)


class TestEchoServer:
    async def test_echo_round_trip(self):
        counters = SharedCounters()
        async with EchoServer("127.0.0.1", 0) as server:
            async with EndpointPool(2, counters, bind_host="127.0.0.1") as pool:
                for endpoint in pool:
                    assert endpoint.send(b"erlang", server.address)
                await wait_until(lambda: counters.received == 2)
            assert server.total_sent == 2

    async def test_broadcast_reaches_known_clients(self):
        counters = SharedCounters()
        async with EchoServer("127.0.0.1", 0, mode="broadcast") as server:
            async with EndpointPool(2, counters, bind_host="127.0.0.1") as pool:
                first, second = list(pool)
                first.send(b"elixir", server.address)
                await wait_until(lambda: counters.received >= 1)
                second.send(b"bun", server.address)
                await wait_until(lambda: counters.received == 3)

    async def test_unknown_mode(self):
        with pytest.raises(ValueError):
            EchoServer(mode="multicast")
