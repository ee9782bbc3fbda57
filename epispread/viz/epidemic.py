"""Post-hoc plots of finished realizations.

Every function:
  - Accepts finished EpidemicLogs (and the population where positions matter)
  - Returns a matplotlib Figure
  - Has an optional ``save_path`` parameter (saves PNG when given)

matplotlib backend is forced to Agg (no display) on import.
"""

from __future__ import annotations

import matplotlib
matplotlib.use('Agg')

from typing import Optional, Sequence

import matplotlib.pyplot as plt
import numpy as np

from epispread.epidemic import EpidemicLog
from epispread.population import HostPopulation
from epispread.reporting import generation_counts, host_timeline, time_course_counts
from epispread.viz.style import (
    CLASS_COLORS,
    STATUS_COLORS,
    TEXT_COLOR,
    dark_figure,
    save_figure,
    styled_legend,
)


def plot_time_course(
    logs: Sequence[EpidemicLog],
    max_time: float,
    n_steps: int = 100,
    save_path: Optional[str] = None,
) -> plt.Figure:
    """Infected hosts per class over time: thin line per iteration, bold mean."""
    fig, ax = dark_figure(figsize=(12, 6))
    per_iteration = []
    times = None
    for log in logs:
        times, counts = time_course_counts(log, max_time, n_steps)
        per_iteration.append(counts)
        for col, host_class in enumerate((1, 2)):
            ax.plot(times, counts[:, col], color=CLASS_COLORS[host_class],
                    alpha=0.15, linewidth=0.8)
    if per_iteration:
        mean = np.mean(per_iteration, axis=0)
        for col, host_class in enumerate((1, 2)):
            ax.plot(times, mean[:, col], color=CLASS_COLORS[host_class],
                    linewidth=2.5, label=f'Type {"I" * host_class} (mean)')
        styled_legend(ax, loc='upper right')

    ax.set_xlabel('Time', fontsize=12)
    ax.set_ylabel('Infected hosts', fontsize=12)
    ax.set_title(f'Infected hosts over {len(logs)} iteration(s)', fontsize=14, fontweight='bold')
    ax.set_ylim(bottom=0)

    if save_path:
        save_figure(fig, save_path)
    return fig


def plot_generation_counts(
    logs: Sequence[EpidemicLog],
    max_generation: int,
    save_path: Optional[str] = None,
) -> plt.Figure:
    """Mean infections per generation, stacked by class."""
    fig, ax = dark_figure(figsize=(10, 6))
    gens = np.arange(max_generation + 1)
    if logs:
        mean = np.mean([generation_counts(log, max_generation) for log in logs], axis=0)
    else:
        mean = np.zeros((max_generation + 1, 2))
    ax.bar(gens, mean[:, 0], color=CLASS_COLORS[1], label='Type I')
    ax.bar(gens, mean[:, 1], bottom=mean[:, 0], color=CLASS_COLORS[2], label='Type II')
    ax.set_xticks(gens)
    ax.set_xlabel('Generation', fontsize=12)
    ax.set_ylabel('Mean infections', fontsize=12)
    ax.set_title('Infections by generation', fontsize=14, fontweight='bold')
    styled_legend(ax, loc='upper right')

    if save_path:
        save_figure(fig, save_path)
    return fig


def plot_host_map(
    log: EpidemicLog,
    population: HostPopulation,
    save_path: Optional[str] = None,
) -> plt.Figure:
    """Host positions coloured by first infection time; never-infected in grey."""
    fig, ax = dark_figure(figsize=(9, 8))
    timeline = host_timeline(log, population)
    never = timeline['tI'].isna().to_numpy()
    ax.scatter(timeline['hostX'][never], timeline['hostY'][never], s=8,
               color=STATUS_COLORS['never'], alpha=0.5, label='Never infected')
    scatter = ax.scatter(timeline['hostX'][~never], timeline['hostY'][~never], s=14,
                         c=timeline['tI'][~never], cmap='inferno', label='Infected')
    if (~never).any():
        cbar = fig.colorbar(scatter, ax=ax)
        cbar.set_label('Infection time', color=TEXT_COLOR)
        cbar.ax.yaxis.set_tick_params(color=TEXT_COLOR, labelcolor=TEXT_COLOR)
    ax.set_aspect('equal')
    ax.set_xlabel('x', fontsize=12)
    ax.set_ylabel('y', fontsize=12)
    ax.set_title('First infection time by host', fontsize=14, fontweight='bold')
    styled_legend(ax, loc='upper right', markerscale=2)

    if save_path:
        save_figure(fig, save_path)
    return fig
