from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Sequence

import numpy as np

LOGGER = logging.getLogger("udpbench.benchmark.aggregate")

STATUS_OK = "ok"
STATUS_UNREACHABLE = "unreachable"


@dataclass
class ServerResult:
    name: str
    average: float
    lost_packets: int
    percentage: float = 0.0
    address: str = ""
    runs: list[int] = field(default_factory=list)
    windows: int = 0
    lost_windows: int = 0
    datagrams_sent: int = 0
    status: str = STATUS_OK

    @property
    def reachable(self) -> bool:
        return self.status == STATUS_OK


def finalize(runs: Sequence[int]) -> float:
    """Arithmetic mean of the accepted runs; 0.0 when none were collected."""
    if len(runs) == 0:
        return 0.0
    return float(np.mean(np.asarray(runs, dtype=float)))


def overall_average(results: Sequence[ServerResult]) -> float:
    if not results:
        return 0.0
    return float(np.mean([result.average for result in results]))


def rank(results: Sequence[ServerResult]) -> list[ServerResult]:
    """Fill in each percentage against the mean of averages and sort, fastest first."""
    mean = overall_average(results)
    for result in results:
        if mean == 0:
            result.percentage = 0.0
        else:
            result.percentage = (result.average - mean) / mean * 100.0
    LOGGER.debug("Overall average across %d servers: %.2f", len(results), mean)
    # sorted() is stable, so ties keep their input order.
    return sorted(results, key=lambda result: result.average, reverse=True)
