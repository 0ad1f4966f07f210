"""Plotting of target/decoy maps."""

import logging

import matplotlib as mpl
import matplotlib.pyplot as plt
import numpy as np
from matplotlib.figure import Figure

from alphashaker.scoring.target_decoy import TargetDecoyMap, TargetDecoyResults

logger = logging.getLogger()


def plot_target_decoy_map(
    target_decoy_map: TargetDecoyMap,
    results: TargetDecoyResults | None = None,
) -> Figure:
    """Plot the PEP curve and the number of accepted targets of an estimated map.

    Parameters
    ----------
    target_decoy_map : TargetDecoyMap
        Estimated map.

    results : TargetDecoyResults, optional
        If given and a threshold was found, it is marked in both panels.

    Returns
    -------
    Figure
        The figure, the caller is responsible for closing it.
    """
    df = target_decoy_map.to_df()

    fig, ax = plt.subplots(1, 2, figsize=(8, 4))
    ax[0].step(df["score"], df["raw_pep"], where="post", alpha=0.5, label="raw")
    ax[0].step(df["score"], df["pep"], where="post", label="PEP")
    ax[0].set_xlabel("score")
    ax[0].set_ylabel("posterior error probability")
    ax[0].set_ylim(-0.02, 1.02)
    ax[0].legend()

    ax[1].plot(df["q_value"], df["n_target"])
    ax[1].set_xlabel("q-value")
    ax[1].set_ylabel("number of targets")

    if results is not None and results.has_threshold:
        ax[0].axvline(results.score_threshold, color="grey", linestyle="--")
        ax[1].axvline(results.fdr_percent / 100, color="grey", linestyle="--")

    if not target_decoy_map.higher_is_better:
        ax[0].invert_xaxis()

    for axs in ax:
        axs.spines["top"].set_visible(False)
        axs.spines["right"].set_visible(False)
    ax[1].get_yaxis().set_major_formatter(
        mpl.ticker.FuncFormatter(lambda x, _p: format(int(x), ","))
    )

    title = target_decoy_map.name or "target/decoy map"
    fig.suptitle(
        f"{title}: {target_decoy_map.n_targets:,} targets, {target_decoy_map.n_decoys:,} decoys"
    )
    fig.tight_layout()
    return fig


def plot_validation_summary(summary: dict[str, dict[str, int]]) -> Figure:
    """Bar chart of the number of matches per validation level and match type."""
    match_types = list(summary)
    levels = sorted({level for counts in summary.values() for level in counts})

    fig, ax = plt.subplots(figsize=(5, 4))
    width = 0.8 / max(len(levels), 1)
    x = np.arange(len(match_types))
    for i, level in enumerate(levels):
        ax.bar(
            x + i * width,
            [summary[m].get(level, 0) for m in match_types],
            width=width,
            label=level.lower(),
        )
    ax.set_xticks(x + width * (len(levels) - 1) / 2)
    ax.set_xticklabels(match_types)
    ax.set_ylabel("number of matches")
    ax.spines["top"].set_visible(False)
    ax.spines["right"].set_visible(False)
    ax.legend()
    fig.tight_layout()
    return fig
