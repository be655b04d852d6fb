from __future__ import annotations

import json
import logging
import re
from dataclasses import asdict
from pathlib import Path
from typing import Mapping, Sequence

import pandas as pd

from .aggregate import ServerResult
from .config import BenchmarkSettings

LOGGER = logging.getLogger("udpbench.benchmark.report")

REPORT_COLUMNS = ["Server", "Avg Messages/sec", "Lost Packets", "% Difference"]


def build_report_frame(results: Sequence[ServerResult]) -> pd.DataFrame:
    rows = [
        {
            "Server": result.name,
            "Avg Messages/sec": result.average,
            "Lost Packets": result.lost_packets,
            "% Difference": f"{result.percentage:.2f}%",
        }
        for result in results
    ]
    return pd.DataFrame(rows, columns=REPORT_COLUMNS)


def format_report(results: Sequence[ServerResult]) -> str:
    frame = build_report_frame(results)
    if frame.empty:
        return "<no results>"
    return frame.to_string(
        index=False,
        formatters={"Avg Messages/sec": lambda value: f"{value:.2f}"},
    )


def safe_filename(name: str) -> str:
    slug = re.sub(r"[^A-Za-z0-9._-]+", "-", name).strip("-").lower()
    return slug or "server"


def write_artifacts(
    output_dir: Path,
    results: Sequence[ServerResult],
    window_frames: Mapping[str, pd.DataFrame],
    settings: BenchmarkSettings,
    charts: Mapping[str, Path] | None = None,
) -> Path:
    """Write per-server window CSVs, the ranked results CSV and a JSON manifest."""
    output_dir.mkdir(parents=True, exist_ok=True)

    window_files: dict[str, str] = {}
    used_slugs: set[str] = set()
    for name, frame in window_frames.items():
        base = slug = safe_filename(name)
        suffix = 2
        while slug in used_slugs:
            slug = f"{base}-{suffix}"
            suffix += 1
        used_slugs.add(slug)
        path = output_dir / f"{slug}__windows.csv"
        frame.to_csv(path, index=False)
        window_files[name] = str(path)
        LOGGER.info("Saved %d window rows for %s to %s", len(frame), name, path)

    results_path = output_dir / "results.csv"
    build_report_frame(results).to_csv(results_path, index=False)
    LOGGER.info("Saved ranked results to %s", results_path)

    manifest = {
        "settings": asdict(settings),
        "results": [asdict(result) for result in results],
        "files": {
            "results": str(results_path),
            "windows": window_files,
            "charts": {key: str(value) for key, value in (charts or {}).items()},
        },
    }
    manifest_path = output_dir / "benchmark_manifest.json"
    with open(manifest_path, "w", encoding="utf-8") as f:
        json.dump(manifest, f, indent=2)
    LOGGER.info("Benchmark manifest written to %s", manifest_path)
    return manifest_path
