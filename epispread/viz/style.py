"""Dark theme styling for epispread plots."""

import matplotlib.pyplot as plt
import numpy as np

DARK_BG = '#1a1a2e'
DARK_PANEL = '#16213e'
TEXT_COLOR = '#e0e0e0'
GRID_COLOR = '#2a2a4a'

# Host classes: Type I, Type II
CLASS_COLORS = {
    1: '#e94560',
    2: '#48c9b0',
}

STATUS_COLORS = {
    'never': '#7f8c8d',
    'infected': '#f39c12',
}


def apply_dark_theme(fig=None, ax=None):
    """Apply dark theme to a Figure and/or Axes."""
    if fig is not None:
        fig.patch.set_facecolor(DARK_BG)
    if ax is not None:
        ax.set_facecolor(DARK_PANEL)
        ax.tick_params(colors=TEXT_COLOR)
        ax.xaxis.label.set_color(TEXT_COLOR)
        ax.yaxis.label.set_color(TEXT_COLOR)
        ax.title.set_color(TEXT_COLOR)
        for spine in ax.spines.values():
            spine.set_color(GRID_COLOR)
        ax.grid(True, color=GRID_COLOR, alpha=0.3, linewidth=0.5)


def dark_figure(nrows=1, ncols=1, figsize=None, **kwargs):
    """Figure + Axes with the dark theme applied. Returns (fig, ax)."""
    if figsize is None:
        figsize = (10, 6) if (nrows == 1 and ncols == 1) else (14, 5 * nrows)
    fig, axes = plt.subplots(nrows, ncols, figsize=figsize, **kwargs)
    apply_dark_theme(fig=fig)
    for a in np.atleast_1d(axes).flat:
        apply_dark_theme(ax=a)
    return fig, axes


def styled_legend(ax, **kwargs):
    return ax.legend(facecolor=DARK_PANEL, edgecolor=GRID_COLOR,
                     labelcolor=TEXT_COLOR, **kwargs)


def save_figure(fig, save_path, dpi=150):
    """Save with tight layout and dark background, then close."""
    fig.tight_layout()
    fig.savefig(save_path, dpi=dpi, facecolor=fig.get_facecolor(),
                edgecolor='none', bbox_inches='tight')
    plt.close(fig)
