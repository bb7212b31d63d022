"""
spatial - Nearest neighbor distances between labeled cell populations

Pipeline, leaf first:

query : KDTree nearest neighbor lookups within one field
statistics : per-field (mean, variance, count) for every label pair
aggregation : field -> sample collapse and study-wide extraction
store : per-sample results with lookup by cell type

Usage
-----
>>> import nnloji as nn
>>>
>>> study = nn.spatial.extract_nearest_neighbor(study, min_num_cells=10)
>>> means, se = nn.spatial.get_nearest_neighbors(study, 'SOX10+ PDL1+')
"""

from .query import (
    NeighborMatch,
    nearest_neighbors,
    nearest_distances,
    field_neighbors,
    field_distances,
)
from .statistics import (
    PairStat,
    FieldStatistics,
    field_pair_statistics,
    field_statistics,
)
from .aggregation import (
    SampleStat,
    collapse,
    sample_statistics,
    sample_nearest_neighbors,
    extract_nearest_neighbor,
    get_all_nearest_neighbors,
    get_nearest_neighbors,
)
from .store import NeighborStore
from .labels import LabelResolver, SubstringResolver, SuffixFamilyResolver

__all__ = [
    # Query
    'NeighborMatch',
    'nearest_neighbors',
    'nearest_distances',
    'field_neighbors',
    'field_distances',

    # Per-field statistics
    'PairStat',
    'FieldStatistics',
    'field_pair_statistics',
    'field_statistics',

    # Aggregation
    'SampleStat',
    'collapse',
    'sample_statistics',
    'sample_nearest_neighbors',
    'extract_nearest_neighbor',
    'get_all_nearest_neighbors',
    'get_nearest_neighbors',

    # Storage
    'NeighborStore',

    # Label families
    'LabelResolver',
    'SubstringResolver',
    'SuffixFamilyResolver',
]
