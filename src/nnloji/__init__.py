# src/nnloji/__init__.py

"""
nnloji - Nearest neighbor statistics between cell populations in
multiplex tissue imaging data
"""

# Core data structures
from .data.core import Study, Sample, Field, LabelIndex
from .data.config import NNConfig
from .data.loaders import load_study_from_dataframe, load_study_from_csv

# Main entry points
from .spatial.aggregation import (
    extract_nearest_neighbor,
    get_all_nearest_neighbors,
    get_nearest_neighbors,
)
from .visualization.comparison import plot_nearest_neighbor
from .visualization.rays import neighbor_ray_plot, rayplot_single_field

# Import submodules
from . import data
from . import spatial
from . import visualization

__version__ = '0.1.0'

__all__ = [
    # Core classes
    'Study',
    'Sample',
    'Field',
    'LabelIndex',
    'NNConfig',

    # Loaders
    'load_study_from_dataframe',
    'load_study_from_csv',

    # Analysis
    'extract_nearest_neighbor',
    'get_all_nearest_neighbors',
    'get_nearest_neighbors',
    'plot_nearest_neighbor',
    'neighbor_ray_plot',
    'rayplot_single_field',

    # Submodules
    'data',
    'spatial',
    'visualization',
]
