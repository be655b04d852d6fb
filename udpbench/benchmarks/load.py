from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Iterable

from ..corpus import Corpus
from ..endpoints import Address, Endpoint, SharedCounters

LOGGER = logging.getLogger("udpbench.benchmark.load")


@dataclass
class LoadStatistics:
    bursts: int
    datagrams_sent: int
    started_at: float
    finished_at: float

    @property
    def duration_s(self) -> float:
        return max(self.finished_at - self.started_at, 0.0)

    @property
    def send_rate_per_sec(self) -> float:
        if self.duration_s == 0:
            return 0.0
        return self.datagrams_sent / self.duration_s


def send_all(
    endpoints: Iterable[Endpoint],
    corpus: Corpus,
    target: Address,
    counters: SharedCounters,
) -> int:
    """Send one burst: the whole corpus, in order, from every live endpoint.

    Returns the number of datagrams handed to the transport. Each rejected send
    counts as one lost packet.
    """
    sent = 0
    for endpoint in endpoints:
        for payload in corpus:
            # An endpoint may be closed by its error handler mid-burst.
            if not endpoint.is_live:
                break
            if endpoint.send(payload, target):
                sent += 1
            else:
                counters.record_lost()
    return sent


class BurstSender:
    """Repeats :func:`send_all` every ``delay_s`` until the stop event is set."""

    def __init__(
        self,
        endpoints: Iterable[Endpoint],
        corpus: Corpus,
        target: Address,
        counters: SharedCounters,
        delay_s: float,
    ) -> None:
        if delay_s <= 0:
            raise ValueError("BurstSender delay must be > 0")
        self._endpoints = list(endpoints)
        self._corpus = corpus
        self._target = target
        self._counters = counters
        self._delay_s = delay_s
        self._bursts = 0
        self._sent = 0

    def burst(self) -> int:
        sent = send_all(self._endpoints, self._corpus, self._target, self._counters)
        self._bursts += 1
        self._sent += sent
        return sent

    async def run(self, stop_event: asyncio.Event) -> LoadStatistics:
        started_at = time.time()
        while not stop_event.is_set():
            self.burst()
            if await _wait_for(stop_event, self._delay_s):
                break
        finished_at = time.time()
        LOGGER.debug("Sender stopped after %d bursts (%d datagrams)", self._bursts, self._sent)
        return LoadStatistics(
            bursts=self._bursts,
            datagrams_sent=self._sent,
            started_at=started_at,
            finished_at=finished_at,
        )


async def _wait_for(event: asyncio.Event, timeout: float) -> bool:
    try:
        await asyncio.wait_for(event.wait(), timeout=timeout)
    except asyncio.TimeoutError:
        return False
    return True
