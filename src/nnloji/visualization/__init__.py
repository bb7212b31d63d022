"""
visualization - Nearest neighbor reports

comparison : grouped bar comparison across samples with paired t-test
rays : per-field nearest neighbor ray plots
"""

from .comparison import (
    ComparisonResult,
    compare_nearest_neighbors,
    paired_ttest,
    plot_comparison,
    plot_nearest_neighbor,
)
from .rays import (
    nearest_rays,
    rayplot_single_field,
    neighbor_ray_plot,
)

__all__ = [
    'ComparisonResult',
    'compare_nearest_neighbors',
    'paired_ttest',
    'plot_comparison',
    'plot_nearest_neighbor',
    'nearest_rays',
    'rayplot_single_field',
    'neighbor_ray_plot',
]
