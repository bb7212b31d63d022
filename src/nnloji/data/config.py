"""
config.py - Configuration and exceptions for nnloji

Contains:
- NNConfig: Analysis and plotting settings
- NNError and subclasses: error taxonomy shared by every module
"""

from dataclasses import dataclass


@dataclass
class NNConfig:
    """Configuration for nearest-neighbor extraction and reporting."""

    # Gating
    min_num_cells: int = 10

    # Units
    microns_per_pixel: float = 0.496
    use_pixel: bool = True

    # Output
    plot_format: str = "pdf"
    plot_dir: str = "./"
    plot_width: float = 10.0
    plot_height: float = 7.0
    dpi: int = 300

    # Ray plot colors
    from_color: str = "#EE7600"
    to_color: str = "#028482"
    line_color: str = "#666666"

    # Parallelism
    n_jobs: int = 1

    def validate(self) -> None:
        """
        Check settings for obviously invalid values.

        Raises
        ------
        ValidationError
            If any setting is out of range.
        """
        if self.min_num_cells < 1:
            raise ValidationError(f"min_num_cells must be >= 1, got {self.min_num_cells}")
        if not self.microns_per_pixel > 0:
            raise ValidationError(f"microns_per_pixel must be > 0, got {self.microns_per_pixel}")
        if self.plot_format not in ("pdf", "png"):
            raise ValidationError(f"Invalid plot format: {self.plot_format}. Use 'pdf' or 'png'.")
        if self.n_jobs < 1:
            raise ValidationError(f"n_jobs must be >= 1, got {self.n_jobs}")

    def unit_scale(self, use_pixel: bool | None = None) -> tuple[float, str]:
        """
        Get the coordinate multiplier and unit string.

        Parameters
        ----------
        use_pixel : bool, optional
            Overrides ``self.use_pixel`` when given.

        Returns
        -------
        Tuple[float, str]
            (scale, unit), e.g. (0.496, 'um') or (1.0, 'px')
        """
        if use_pixel is None:
            use_pixel = self.use_pixel
        if use_pixel:
            return 1.0, "px"
        return self.microns_per_pixel, "um"


class NNError(Exception):
    """Base exception for nnloji errors."""

    pass


class ValidationError(NNError):
    """Raised when input data or settings fail validation."""

    pass


class EmptyInputError(NNError):
    """Raised when a distance query gets an empty point set."""

    pass


class UnknownLabelError(NNError, KeyError):
    """Raised when a label is not part of the study vocabulary."""

    def __init__(self, label: str):
        self.label = label
        super().__init__(f"There is no celltype: '{label}'")

    def __str__(self) -> str:
        return self.args[0]


class NoMatchError(NNError):
    """Raised when a label pattern resolves to no usable target labels."""

    pass


class InsufficientDataError(NNError):
    """Raised when a statistical test has too few observations."""

    pass


class NotComputedError(NNError):
    """Raised when results are requested before they were computed."""

    pass
