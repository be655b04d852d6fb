from __future__ import annotations

import logging
from pathlib import Path
from typing import Mapping, Sequence

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns

from .aggregate import ServerResult

LOGGER = logging.getLogger("udpbench.benchmark.charts")

sns.set_style("whitegrid")
plt.rcParams["figure.dpi"] = 100
plt.rcParams["savefig.dpi"] = 300
plt.rcParams["font.size"] = 10
plt.rcParams["axes.labelsize"] = 11
plt.rcParams["axes.titlesize"] = 13
plt.rcParams["legend.fontsize"] = 9

STATUS_COLORS = {
    "ok": "#2E86AB",
    "unreachable": "#C73E1D",
}


def render_charts(
    results: Sequence[ServerResult],
    window_frames: Mapping[str, pd.DataFrame],
    output_dir: Path,
) -> dict[str, Path]:
    """Render the throughput and per-window charts; returns their paths by kind."""
    output_dir.mkdir(parents=True, exist_ok=True)
    charts: dict[str, Path] = {}

    if results:
        throughput_path = output_dir / "throughput.png"
        _render_throughput_chart(results, throughput_path)
        charts["throughput"] = throughput_path
        LOGGER.info("Rendering chart %s", throughput_path)
    else:
        LOGGER.warning("No results available for throughput chart")

    frames = [frame for frame in window_frames.values() if not frame.empty]
    if frames:
        windows_path = output_dir / "windows.png"
        _render_window_chart(pd.concat(frames, ignore_index=True), windows_path)
        charts["windows"] = windows_path
        LOGGER.info("Rendering chart %s", windows_path)
    else:
        LOGGER.warning("No window samples available for window chart")

    return charts


def _render_throughput_chart(results: Sequence[ServerResult], chart_path: Path) -> None:
    """Bar chart of average messages/sec, ranked, annotated with % difference."""
    fig, ax = plt.subplots(figsize=(10, 6))

    positions = np.arange(len(results))
    values = [result.average for result in results]
    colors = [STATUS_COLORS.get(result.status, "#808080") for result in results]

    bars = ax.bar(
        positions,
        values,
        color=colors,
        alpha=0.8,
        edgecolor="white",
        linewidth=2,
    )
    ax.set_xticks(positions)
    ax.set_xticklabels([result.name for result in results])
    ax.set_ylabel("Avg Messages/sec", fontweight="semibold")
    ax.set_title("UDP Throughput by Server", fontweight="bold", pad=15)
    ax.grid(True, alpha=0.3, axis="y", linestyle="--")

    for bar, result in zip(bars, results):
        height = bar.get_height()
        ax.text(
            bar.get_x() + bar.get_width() / 2.0,
            height,
            f"{height:.1f}\n({result.percentage:+.2f}%)",
            ha="center",
            va="bottom",
            fontweight="semibold",
        )

    plt.tight_layout()
    fig.savefig(chart_path, bbox_inches="tight", facecolor="white")
    plt.close(fig)


def _render_window_chart(df: pd.DataFrame, chart_path: Path) -> None:
    """Line chart of received count per sampling window, one line per server."""
    fig, ax = plt.subplots(figsize=(12, 6))

    sns.lineplot(
        data=df,
        x="window",
        y="received",
        hue="server",
        marker="o",
        ax=ax,
    )
    lost = df[~df["accepted"].astype(bool)]
    if not lost.empty:
        ax.scatter(
            lost["window"],
            lost["received"],
            marker="x",
            color=STATUS_COLORS["unreachable"],
            label="lost interval",
            zorder=3,
        )
        ax.legend()

    ax.set_xlabel("Window", fontweight="semibold")
    ax.set_ylabel("Messages received", fontweight="semibold")
    ax.set_title("Received Messages per Sampling Window", fontweight="bold", pad=15)
    ax.grid(True, alpha=0.3, linestyle="--")

    plt.tight_layout()
    fig.savefig(chart_path, bbox_inches="tight", facecolor="white")
    plt.close(fig)
