"""
data - Study containers, configuration and loaders
"""

from .config import (
    NNConfig,
    NNError,
    ValidationError,
    EmptyInputError,
    UnknownLabelError,
    NoMatchError,
    InsufficientDataError,
    NotComputedError,
)
from .core import LabelIndex, Field, Sample, Study
from .loaders import CellTableColumns, load_study_from_dataframe, load_study_from_csv

__all__ = [
    # Configuration
    'NNConfig',

    # Exceptions
    'NNError',
    'ValidationError',
    'EmptyInputError',
    'UnknownLabelError',
    'NoMatchError',
    'InsufficientDataError',
    'NotComputedError',

    # Containers
    'LabelIndex',
    'Field',
    'Sample',
    'Study',

    # Loaders
    'CellTableColumns',
    'load_study_from_dataframe',
    'load_study_from_csv',
]
