from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional, Sequence

import pandas as pd

from ..corpus import Corpus
from ..endpoints import EndpointPool, SharedCounters
from .aggregate import STATUS_OK, STATUS_UNREACHABLE, ServerResult, finalize, rank
from .collector import SamplingWindow, WindowState
from .config import BenchmarkSettings, ServerTarget, check_unique_names
from .load import BurstSender

LOGGER = logging.getLogger("udpbench.benchmark.runner")


class BenchmarkRunner:
    """Tests each target in turn and ranks the results."""

    def __init__(
        self,
        settings: BenchmarkSettings,
        corpus: Corpus,
        message_logger: Optional[logging.Logger] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._settings = settings
        self._corpus = corpus
        self._message_logger = message_logger
        self._sleep = sleep
        self.results: list[ServerResult] = []
        self.window_frames: dict[str, pd.DataFrame] = {}

    def load_description(self) -> str:
        return (
            f"{self._settings.clients} clients x {len(self._corpus)} msg, "
            f"min delay: {self._settings.delay_s * 1000:.0f}ms"
        )

    async def test_server(self, target: ServerTarget) -> ServerResult:
        settings = self._settings
        LOGGER.info("Connecting to %s at %s", target.name, target.address)
        counters = SharedCounters()
        connect_started = time.perf_counter()

        async with EndpointPool(
            settings.clients,
            counters,
            bind_host=settings.bind_host,
            message_logger=self._message_logger,
        ) as pool:
            LOGGER.info(
                "All clients connected to %s: %.3fms (%d/%d live)",
                target.name,
                (time.perf_counter() - connect_started) * 1000.0,
                pool.live_count,
                len(pool),
            )
            stop_event = asyncio.Event()
            sender = BurstSender(
                pool,
                self._corpus,
                target.socket_address,
                counters,
                settings.delay_s,
            )
            window = SamplingWindow(
                target.name,
                counters,
                stop_event,
                window_s=settings.window_s,
                runs_required=settings.runs_required,
                max_windows=settings.max_windows,
                load_description=self.load_description(),
            )

            sender_task = asyncio.create_task(sender.run(stop_event))
            try:
                if settings.warmup_s:
                    await asyncio.sleep(settings.warmup_s)
                    discarded = counters.swap_received()
                    LOGGER.info(
                        "%s: warmup finished, discarded %d messages", target.name, discarded
                    )
                runs = await window.run()
            finally:
                stop_event.set()
                stats = await sender_task

        average = finalize(runs)
        status = STATUS_OK if window.state is WindowState.DONE else STATUS_UNREACHABLE
        LOGGER.info("Average messages per second for %s: %s", target.name, average)
        LOGGER.info(
            "%s: sent %d datagrams in %d bursts (%.0f/s)",
            target.name,
            stats.datagrams_sent,
            stats.bursts,
            stats.send_rate_per_sec,
        )
        self.window_frames[target.name] = window.build_dataframe()
        return ServerResult(
            name=target.name,
            average=average,
            lost_packets=counters.lost_packets,
            address=target.address,
            runs=runs,
            windows=window.windows,
            lost_windows=window.lost_windows,
            datagrams_sent=stats.datagrams_sent,
            status=status,
        )

    async def run_all(self, targets: Sequence[ServerTarget]) -> list[ServerResult]:
        targets = check_unique_names(targets)
        results: list[ServerResult] = []
        for idx, target in enumerate(targets):
            results.append(await self.test_server(target))
            if idx < len(targets) - 1 and self._settings.cooldown_s > 0:
                LOGGER.info("Waiting %.1fs before the next server", self._settings.cooldown_s)
                await self._sleep(self._settings.cooldown_s)
        self.results = list(results)
        return rank(results)
