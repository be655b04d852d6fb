from __future__ import annotations

import asyncio
import enum
import logging
import time
from dataclasses import dataclass

import pandas as pd

from ..endpoints import SharedCounters

LOGGER = logging.getLogger("udpbench.benchmark.collector")

WINDOW_COLUMNS = ["server", "window", "timestamp", "received", "accepted", "run"]


class WindowState(enum.Enum):
    RUNNING = "running"
    DONE = "done"
    UNREACHABLE = "unreachable"


@dataclass
class WindowRecord:
    window: int
    timestamp: float
    received: int
    accepted: bool
    run: int | None


class SamplingWindow:
    """Periodic read-and-reset of the received counter.

    Each tick swaps ``received`` to zero. A non-zero count becomes a run; a zero
    count is a lost interval and adds one lost packet. Reaching ``runs_required``
    runs (or ``max_windows`` ticks, when non-zero) sets ``stop_event``.
    """

    def __init__(
        self,
        server_name: str,
        counters: SharedCounters,
        stop_event: asyncio.Event,
        window_s: float = 1.0,
        runs_required: int = 5,
        max_windows: int = 0,
        load_description: str = "",
    ) -> None:
        if window_s <= 0:
            raise ValueError("SamplingWindow window_s must be > 0")
        if runs_required <= 0:
            raise ValueError("SamplingWindow runs_required must be > 0")
        self._server_name = server_name
        self._counters = counters
        self._stop_event = stop_event
        self._window_s = window_s
        self._runs_required = runs_required
        self._max_windows = max_windows
        self._load_description = load_description

        self._state = WindowState.RUNNING
        self._windows = 0
        self._records: list[WindowRecord] = []
        self.runs: list[int] = []
        self.lost_windows = 0

    @property
    def state(self) -> WindowState:
        return self._state

    @property
    def windows(self) -> int:
        return self._windows

    @property
    def records(self) -> list[WindowRecord]:
        return list(self._records)

    def tick(self) -> int | None:
        """Sample one window; returns the count, or None once sampling has ended."""
        if self._state is not WindowState.RUNNING:
            return None

        count = self._counters.swap_received()
        self._windows += 1
        if count > 0:
            self.runs.append(count)
        else:
            self._counters.record_lost()
            self.lost_windows += 1

        self._records.append(
            WindowRecord(
                window=self._windows,
                timestamp=time.time(),
                received=count,
                accepted=count > 0,
                run=len(self.runs) if count > 0 else None,
            )
        )
        if self._load_description:
            LOGGER.info(
                "%s: %d messages per second (%s)",
                self._server_name,
                count,
                self._load_description,
            )
        else:
            LOGGER.info("%s: %d messages per second", self._server_name, count)

        if len(self.runs) >= self._runs_required:
            LOGGER.info("%s: %d runs completed", self._server_name, len(self.runs))
            self._finish(WindowState.DONE)
        elif self._max_windows and self._windows >= self._max_windows:
            LOGGER.warning(
                "%s: only %d of %d runs after %d windows; target unreachable",
                self._server_name,
                len(self.runs),
                self._runs_required,
                self._windows,
            )
            self._finish(WindowState.UNREACHABLE)
        return count

    async def run(self) -> list[int]:
        loop = asyncio.get_running_loop()
        next_tick = loop.time() + self._window_s
        while self._state is WindowState.RUNNING:
            await asyncio.sleep(max(next_tick - loop.time(), 0.0))
            next_tick += self._window_s
            self.tick()
        return list(self.runs)

    def build_dataframe(self) -> pd.DataFrame:
        if not self._records:
            return pd.DataFrame(columns=WINDOW_COLUMNS)
        rows = [
            {
                "server": self._server_name,
                "window": record.window,
                "timestamp": record.timestamp,
                "received": record.received,
                "accepted": record.accepted,
                "run": record.run,
            }
            for record in self._records
        ]
        return pd.DataFrame(rows, columns=WINDOW_COLUMNS)

    def _finish(self, state: WindowState) -> None:
        self._state = state
        self._stop_event.set()
