"""epispread visualization helpers.

Modules:
  - style: Dark theme colours and helpers
  - epidemic: Time course, generation and host-map plots of finished logs
"""

from epispread.viz.style import (  # noqa: F401
    CLASS_COLORS,
    DARK_BG,
    DARK_PANEL,
    GRID_COLOR,
    TEXT_COLOR,
    apply_dark_theme,
    dark_figure,
    save_figure,
)

from epispread.viz.epidemic import (  # noqa: F401
    plot_generation_counts,
    plot_host_map,
    plot_time_course,
)
