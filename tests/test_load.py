import asyncio

import pytest

from udpbench.benchmarks.load import BurstSender, LoadStatistics, send_all
from udpbench.corpus import Corpus
from udpbench.endpoints import EndpointPool, SharedCounters

TARGET = ("127.0.0.1", 5001)


class FakeEndpoint:
    def __init__(self, name, fail_on=(), close_after=None, live=True):
        self.name = name
        self.sent = []
        self._fail_on = set(fail_on)
        self._close_after = close_after
        self._live = live
        self._attempts = 0

    @property
    def is_live(self):
        return self._live

    def send(self, payload, address):
        assert address == TARGET
        self._attempts += 1
        if self._attempts in self._fail_on:
            return False
        self.sent.append(payload)
        if self._close_after is not None and len(self.sent) >= self._close_after:
            self._live = False
        return True


@pytest.fixture
def corpus():
    return Corpus.from_messages(["zoo", "kangaroo", "erlang", "elixir"])


class TestSendAll:
    def test_sends_corpus_in_order_from_each_endpoint(self, corpus):
        endpoints = [FakeEndpoint("a"), FakeEndpoint("b")]
        counters = SharedCounters()
        sent = send_all(endpoints, corpus, TARGET, counters)
        assert sent == 8
        for endpoint in endpoints:
            assert endpoint.sent == [b"zoo", b"kangaroo", b"erlang", b"elixir"]
        assert counters.lost_packets == 0

    def test_failed_send_counts_lost_and_continues(self, corpus):
        flaky = FakeEndpoint("flaky", fail_on={2})
        healthy = FakeEndpoint("healthy")
        counters = SharedCounters()
        sent = send_all([flaky, healthy], corpus, TARGET, counters)
        assert sent == 7
        assert counters.lost_packets == 1
        assert flaky.sent == [b"zoo", b"erlang", b"elixir"]
        assert len(healthy.sent) == 4

    def test_closed_endpoints_are_skipped(self, corpus):
        closed = FakeEndpoint("closed", live=False)
        counters = SharedCounters()
        assert send_all([closed], corpus, TARGET, counters) == 0
        assert closed.sent == []
        assert counters.lost_packets == 0

    def test_endpoint_closing_mid_burst(self, corpus):
        closing = FakeEndpoint("closing", close_after=2)
        other = FakeEndpoint("other")
        counters = SharedCounters()
        sent = send_all([closing, other], corpus, TARGET, counters)
        assert closing.sent == [b"zoo", b"kangaroo"]
        assert sent == 6
        assert counters.lost_packets == 0


class TestLoadStatistics:
    def test_rate(self):
        stats = LoadStatistics(bursts=2, datagrams_sent=100, started_at=10.0, finished_at=12.0)
        assert stats.duration_s == 2.0
        assert stats.send_rate_per_sec == 50.0

    def test_zero_duration(self):
        stats = LoadStatistics(bursts=0, datagrams_sent=0, started_at=5.0, finished_at=5.0)
        assert stats.send_rate_per_sec == 0.0


class TestBurstSender:
    def test_rejects_non_positive_delay(self, corpus):
        with pytest.raises(ValueError):
            BurstSender([], corpus, TARGET, SharedCounters(), delay_s=0)

    @pytest.mark.asyncio
    async def test_first_burst_is_immediate(self, corpus):
        endpoint = FakeEndpoint("a")
        sender = BurstSender([endpoint], corpus, TARGET, SharedCounters(), delay_s=10.0)
        stop_event = asyncio.Event()
        asyncio.get_running_loop().call_later(0.02, stop_event.set)
        stats = await asyncio.wait_for(sender.run(stop_event), timeout=2.0)
        assert stats.bursts == 1
        assert stats.datagrams_sent == 4

    @pytest.mark.asyncio
    async def test_repeats_until_stopped(self, corpus):
        endpoints = [FakeEndpoint("a"), FakeEndpoint("b")]
        sender = BurstSender(endpoints, corpus, TARGET, SharedCounters(), delay_s=0.005)
        stop_event = asyncio.Event()
        asyncio.get_running_loop().call_later(0.1, stop_event.set)
        stats = await asyncio.wait_for(sender.run(stop_event), timeout=2.0)
        assert stats.bursts >= 3
        assert stats.datagrams_sent == stats.bursts * 8
        assert len(endpoints[0].sent) == stats.bursts * 4


class TestSendAllOverSockets:
    @pytest.mark.asyncio
    async def test_failed_sends_count_as_lost_and_keep_endpoint_open(self, corpus):
        counters = SharedCounters()
        async with EndpointPool(1, counters) as pool:
            (endpoint,) = list(pool)
            # Broadcast without SO_BROADCAST is refused by the kernel on every send.
            sent = send_all(pool, corpus, ("255.255.255.255", 5001), counters)
            assert sent == 0
            assert counters.lost_packets == 4
            assert endpoint.send_failures == 4
            assert endpoint.errors == 0
            assert endpoint.is_live

            send_all(pool, corpus, ("255.255.255.255", 5001), counters)
            assert counters.lost_packets == 8
            assert endpoint.is_live
