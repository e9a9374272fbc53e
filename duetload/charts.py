from __future__ import annotations

import logging
from pathlib import Path

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns

from .collector import LoadTestStats, build_samples_dataframe

LOGGER = logging.getLogger("duetload.charts")

sns.set_style("whitegrid")
plt.rcParams["figure.dpi"] = 100
plt.rcParams["savefig.dpi"] = 150
plt.rcParams["font.size"] = 10
plt.rcParams["axes.labelsize"] = 11
plt.rcParams["axes.titlesize"] = 13
plt.rcParams["legend.fontsize"] = 9

TARGET_COLORS = {
    "old": "#2E86AB",
    "latest": "#F18F01",
}
DISTRIBUTION_FILENAME = "latency_distribution.png"
DUET_FILENAME = "duet_comparison.png"


def render_report_charts(stats: LoadTestStats, output_dir: Path) -> list[Path]:
    """Render the latency charts for a finished run and return the written files."""
    output_dir.mkdir(parents=True, exist_ok=True)
    df = build_samples_dataframe(stats)
    df = df[np.isfinite(df["value"].astype(float))]
    if df.empty:
        LOGGER.warning("No latency samples recorded; skipping charts")
        return []

    written = [_render_distribution_chart(df, stats.unit, output_dir / DISTRIBUTION_FILENAME)]
    if "old_ms" in df.columns:
        written.append(_render_duet_chart(df, output_dir / DUET_FILENAME))
    return written


def _render_distribution_chart(df: pd.DataFrame, unit: str, chart_path: Path) -> Path:
    """Box plot of the recorded series per request name."""
    order = sorted(df["request"].unique())
    fig, ax = plt.subplots(figsize=(max(8, 1.5 * len(order)), 6))

    sns.boxplot(
        data=df,
        x="request",
        y="value",
        order=order,
        color="#2E86AB",
        ax=ax,
        linewidth=1.5,
        width=0.6,
    )

    if unit == "%":
        ax.axhline(0, color="#C73E1D", linestyle="--", linewidth=1)
        ax.set_ylabel("Latency change latest vs old (%)", fontweight="semibold")
        ax.set_title("Relative Latency Change by Request", fontweight="bold", pad=15)
    else:
        ax.set_ylabel("Latency (ms)", fontweight="semibold")
        ax.set_ylim(bottom=0)
        ax.set_title("Latency Distribution by Request", fontweight="bold", pad=15)
    ax.set_xlabel("Request", fontweight="semibold")
    _style_axes(ax)

    plt.tight_layout()
    fig.savefig(chart_path, bbox_inches="tight", facecolor="white")
    plt.close(fig)
    LOGGER.info("Rendering chart %s", chart_path)
    return chart_path


def _render_duet_chart(df: pd.DataFrame, chart_path: Path) -> Path:
    """Split violins of old vs latest absolute latencies per request."""
    long_df = df.melt(
        id_vars=["request"],
        value_vars=["old_ms", "latest_ms"],
        var_name="target",
        value_name="latency_ms",
    )
    long_df["target"] = long_df["target"].str.replace("_ms", "", regex=False)
    order = sorted(long_df["request"].unique())

    fig, ax = plt.subplots(figsize=(max(8, 1.5 * len(order)), 6))
    sns.violinplot(
        data=long_df,
        x="request",
        y="latency_ms",
        hue="target",
        order=order,
        hue_order=list(TARGET_COLORS),
        palette=TARGET_COLORS,
        split=True,
        inner="quartile",
        cut=0,
        ax=ax,
    )

    ax.set_xlabel("Request", fontweight="semibold")
    ax.set_ylabel("Latency (ms)", fontweight="semibold")
    ax.set_ylim(bottom=0)
    ax.set_title("Old vs Latest Latency by Request", fontweight="bold", pad=15)
    ax.legend(title="Target", loc="upper right", frameon=True)
    _style_axes(ax)

    plt.tight_layout()
    fig.savefig(chart_path, bbox_inches="tight", facecolor="white")
    plt.close(fig)
    LOGGER.info("Rendering chart %s", chart_path)
    return chart_path


def _style_axes(ax: plt.Axes) -> None:
    ax.grid(True, alpha=0.3, linestyle="--", linewidth=0.5, axis="y")
    ax.set_axisbelow(True)
    ax.spines["top"].set_visible(False)
    ax.spines["right"].set_visible(False)
    ax.spines["left"].set_color("#CCCCCC")
    ax.spines["bottom"].set_color("#CCCCCC")
    ax.tick_params(axis="x", rotation=20)
