"""
Render example trades of a backtest bucket as PNG charts.

Each chart shows the close price around one trade with its entry and
exit bars marked.  Rendering uses the Agg backend so it works headless.
"""
from __future__ import annotations

import os
from typing import List, Optional

import pandas as pd
import matplotlib
matplotlib.use("Agg")  # allow headless environments
import matplotlib.pyplot as plt

from . import config
from .models import Stats


def find_examples(
    df: pd.DataFrame,
    stats: Stats,
    num_examples: int = 3,
    lookback: int = 30,
    lookforward: int = 30,
    symbol: str = "",
    output_dir: Optional[str] = None,
) -> List[dict]:
    """
    Chart the last ``num_examples`` trades of ``stats``.  The window runs
    from ``lookback`` bars before the entry to ``lookforward`` bars after
    the exit.  Returns one metadata dict per chart.
    """
    output_dir = output_dir or config.CHART_OUTPUT_DIR
    if num_examples <= 0 or not stats.trades:
        return []
    os.makedirs(output_dir, exist_ok=True)
    examples = []
    for trade in stats.trades[-num_examples:]:
        entry_i = df.index.get_loc(trade.entry_date)
        exit_i = df.index.get_loc(trade.exit_date)
        start_i = max(0, entry_i - lookback)
        end_i = min(len(df) - 1, exit_i + lookforward)
        window = df.iloc[start_i:end_i + 1]

        fig, ax = plt.subplots(figsize=(6, 4))
        ax.plot(window.index, window["close"], label="Close", color="black")
        ax.scatter([trade.entry_date], [trade.entry_price], marker="^", color="green", zorder=3, label="Entry")
        ax.scatter([trade.exit_date], [trade.exit_price], marker="v", color="red", zorder=3, label="Exit")
        ax.axvspan(trade.entry_date, trade.exit_date, color="magenta", alpha=0.08)
        ax.set_title(f"{symbol} {trade.entry_date.strftime('%Y-%m-%d')} ({trade.pnl * 100:+.1f}%)")
        ax.set_ylabel("Price")
        ax.legend(loc="upper left", fontsize=7)

        filename = f"{symbol or 'series'}_{trade.entry_date.strftime('%Y%m%d')}_{trade.days}d.png"
        filepath = os.path.join(output_dir, filename)
        fig.tight_layout()
        fig.savefig(filepath)
        plt.close(fig)

        examples.append({
            "entry_date": trade.entry_date.isoformat(),
            "exit_date": trade.exit_date.isoformat(),
            "days": trade.days,
            "pnl": trade.pnl,
            "chart_path": filepath,
        })
    return examples
