"""
rays.py - Nearest neighbor ray plots

Draws, for one field, a segment from every 'from' cell to its nearest 'to'
cell on top of the cell scatter. The batch form writes one file per field
for every field of every sample.
"""
from __future__ import annotations
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from nnloji.data.core import Field, Study

from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional, Tuple
import logging
import os
import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
from matplotlib.collections import LineCollection

from ..data.config import NNConfig
from ..spatial.query import field_neighbors

logger = logging.getLogger(__name__)


def has_rays(field: 'Field', from_type: str, to_type: str) -> bool:
    """True if ``field`` has at least one ray from ``from_type`` to ``to_type``."""
    n_from = field.count(from_type)
    n_to = field.count(to_type)
    if from_type == to_type:
        return n_from > 1
    return n_from > 0 and n_to > 0


def nearest_rays(
    field: 'Field',
    from_type: str,
    to_type: str,
    scale: float = 1.0,
) -> pd.DataFrame:
    """
    Nearest ``to_type`` match for every ``from_type`` cell.

    Parameters
    ----------
    field : Field
    from_type : str
        Cell type the rays start from.
    to_type : str
        Cell type the rays end at.
    scale : float
        Coordinate multiplier (e.g. microns per pixel).

    Returns
    -------
    pd.DataFrame
        One row per ``from_type`` cell with columns
        from_x, from_y, dist, to_x, to_y.
    """
    from_points = field.points_with_label(from_type) * scale
    to_points = field.points_with_label(to_type) * scale
    match = field_neighbors(field, from_type, to_type)
    matched = to_points[match.indices]
    return pd.DataFrame({
        'from_x': from_points[:, 0],
        'from_y': from_points[:, 1],
        'dist': match.distances * scale,
        'to_x': matched[:, 0],
        'to_y': matched[:, 1],
    })


def rayplot_single_field(
    field: 'Field',
    from_type: str,
    to_type: str,
    sample_name: str = '',
    from_color: str = '#EE7600',
    to_color: str = '#028482',
    line_color: str = '#666666',
    use_pixel: Optional[bool] = None,
    microns_per_pixel: Optional[float] = None,
    ax: Optional[plt.Axes] = None,
) -> Optional[plt.Axes]:
    """
    Plot nearest neighbor rays for a single field.

    Parameters
    ----------
    field : Field
        Field to draw.
    from_type : str
        Cell type from which the rays are drawn.
    to_type : str
        Cell type to which the rays are drawn.
    sample_name : str
        Used in the title.
    from_color, to_color : str
        Point colors for the two cell types.
    line_color : str
        Ray color.
    use_pixel : bool, optional
        Express units as pixels. Default: NNConfig.use_pixel.
    microns_per_pixel : float, optional
        Conversion factor. Default: NNConfig.microns_per_pixel.
    ax : plt.Axes, optional
        Axes to draw on. A new figure is created if None.

    Returns
    -------
    plt.Axes or None
        None (nothing drawn) if the field lacks either cell type.
    """
    if not has_rays(field, from_type, to_type):
        return None

    config = NNConfig()
    if microns_per_pixel is not None:
        config = NNConfig(microns_per_pixel=microns_per_pixel)
    scale, unit = config.unit_scale(use_pixel)
    rays = nearest_rays(field, from_type, to_type, scale=scale)

    if ax is None:
        _, ax = plt.subplots(figsize=(10, 7))

    points = {
        from_type: (field.points_with_label(from_type) * scale, from_color),
        to_type: (field.points_with_label(to_type) * scale, to_color),
    }
    for label, (coords, color) in points.items():
        ax.scatter(coords[:, 0], coords[:, 1], c=color, marker='D', s=12, label=label)

    segments = np.stack([
        rays[['from_x', 'from_y']].to_numpy(),
        rays[['to_x', 'to_y']].to_numpy(),
    ], axis=1)
    ax.add_collection(LineCollection(segments, colors=line_color, linewidths=0.8))

    # image coordinates: y grows downwards
    ax.invert_yaxis()
    ax.set_xlabel(f'x ({unit})')
    ax.set_ylabel(f'y ({unit})')
    ax.set_title(f'{sample_name} - {field.name}')
    ax.legend(loc='lower left', fontsize=8)
    return ax


@contextmanager
def _figure(figsize: Tuple[float, float]) -> Iterator[Tuple[plt.Figure, plt.Axes]]:
    fig, ax = plt.subplots(figsize=figsize)
    try:
        yield fig, ax
    finally:
        plt.close(fig)


def save_field_rayplot(
    field: 'Field',
    sample_name: str,
    from_type: str,
    to_type: str,
    out_dir: Path,
    fmt: str = 'pdf',
    figsize: Tuple[float, float] = (10, 7),
    dpi: int = 300,
    **plot_kwargs,
) -> Optional[Path]:
    """
    Write the ray plot of one field to ``{sample}_{field}.{fmt}``.

    Returns
    -------
    Path or None
        Written file, or None if the field was skipped.
    """
    if not has_rays(field, from_type, to_type):
        return None

    path = Path(out_dir) / f"{sample_name}_{field.name}.{fmt}"
    bbox = 'tight'
    if fmt == 'png':
        # fixed 800 x 600 raster
        figsize, dpi, bbox = (8, 6), 100, None

    with _figure(figsize) as (fig, ax):
        rayplot_single_field(field, from_type, to_type, sample_name, ax=ax, **plot_kwargs)
        try:
            fig.savefig(path, format=fmt, dpi=dpi, bbox_inches=bbox)
        except Exception:
            # no partial files
            path.unlink(missing_ok=True)
            raise
    return path


def neighbor_ray_plot(
    study: 'Study',
    from_type: str,
    to_type: str,
    plot_dir: Optional[str] = None,
    fmt: Optional[str] = None,
    use_pixel: Optional[bool] = None,
    from_color: Optional[str] = None,
    to_color: Optional[str] = None,
    line_color: Optional[str] = None,
    verbose: bool = True,
) -> List[Path]:
    """
    Plot nearest neighbor ray plots for every field of every sample.

    Fields without both cell types are skipped silently. A field that fails
    to render is logged and skipped; the remaining fields are still written.

    Parameters
    ----------
    study : Study
    from_type : str
        Cell type from which the rays are drawn.
    to_type : str
        Cell type to which the rays are drawn.
    plot_dir : str, optional
        Output directory (created if needed). Default: study.config.plot_dir.
    fmt : str, optional
        'pdf' or 'png' (a leading '.' is accepted). Default:
        study.config.plot_format.
    use_pixel : bool, optional
        Pixels instead of micrometers. Default: study.config.use_pixel.
    from_color, to_color, line_color : str, optional
        Colors. Defaults from study.config.
    verbose : bool
        Print a summary.

    Returns
    -------
    List[Path]
        Files written, in study order.

    Raises
    ------
    UnknownLabelError
        If ``from_type`` or ``to_type`` is not a study marker.

    Examples
    --------
    >>> paths = neighbor_ray_plot(study, 'SOX10+ PDL1+', 'CD8+ PD1+',
    ...                           plot_dir='./ray_plots', fmt='png')
    """
    config = study.config
    out_dir = Path(plot_dir if plot_dir is not None else config.plot_dir)
    fmt = (fmt or config.plot_format).lstrip('.').lower()
    if fmt not in ('pdf', 'png'):
        raise ValueError(f"Invalid format: {fmt}. Use 'pdf' or 'png'.")
    if use_pixel is None:
        use_pixel = config.use_pixel

    study.markers.require(from_type)
    study.markers.require(to_type)

    os.makedirs(out_dir, exist_ok=True)

    plot_kwargs = dict(
        from_color=from_color or config.from_color,
        to_color=to_color or config.to_color,
        line_color=line_color or config.line_color,
        use_pixel=use_pixel,
        microns_per_pixel=config.microns_per_pixel,
    )

    written: List[Path] = []
    n_skipped = n_failed = 0
    for sample, field in study.iter_fields():
        try:
            path = save_field_rayplot(
                field, sample.name, from_type, to_type, out_dir, fmt=fmt,
                figsize=(config.plot_width, config.plot_height), dpi=config.dpi,
                **plot_kwargs,
            )
        except Exception as e:
            n_failed += 1
            logger.warning("Ray plot failed for %s/%s: %s", sample.name, field.name, e)
            continue
        if path is None:
            n_skipped += 1
        else:
            written.append(path)

    if verbose:
        print(f"  ✓ Ray plots ({from_type}→{to_type}): {len(written)} written, "
              f"{n_skipped} skipped, {n_failed} failed")
        print(f"    Saved to {out_dir}")

    return written
