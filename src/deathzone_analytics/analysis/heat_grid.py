"""
Heat Grid Rasterizer

Accumulates elimination positions into a fixed-resolution 2-D grid over the
horizontal map plane (x and z; y is height) and applies time-based decay.
"""

import logging
from typing import Any, Dict, Optional, Tuple

import numpy as np

from .models import ConfigurationError, Vector3, decay_factor


logger = logging.getLogger(__name__)

# Indices of the rasterized axes in a world position
HORIZONTAL_AXES = (0, 2)


class HeatGrid:
    """
    Decaying 2-D accumulation grid.

    Cells are indexed [x][z], row-major on the x axis. Cells only change by
    +1 rasterization or multiplicative decay, so they never go negative.
    """

    def __init__(
        self,
        resolution: int,
        map_min: Vector3,
        map_max: Vector3,
        decay_rate_per_minute: float,
    ):
        """
        Initialize the heat grid.

        Args:
            resolution: Cells per axis
            map_min: Lower world bounds
            map_max: Upper world bounds
            decay_rate_per_minute: Fraction of heat removed per elapsed minute

        Raises:
            ConfigurationError: If the resolution is not positive or the bounds
                are degenerate on a rasterized axis
        """
        if resolution <= 0:
            raise ConfigurationError(f"Heat grid resolution must be positive, got {resolution}")
        if decay_rate_per_minute < 0:
            raise ConfigurationError(
                f"Heat decay rate cannot be negative, got {decay_rate_per_minute}"
            )

        for axis in HORIZONTAL_AXES:
            if map_max[axis] == map_min[axis]:
                raise ConfigurationError(
                    f"Degenerate map bounds on axis {axis}: min == max == {map_min[axis]}"
                )

        self.resolution = resolution
        self.map_min = tuple(map_min)
        self.map_max = tuple(map_max)
        self.decay_rate_per_minute = decay_rate_per_minute

        self.cells = np.zeros((resolution, resolution), dtype=np.float64)

        logger.debug(
            f"Heat grid initialized: {resolution}x{resolution}, bounds {self.map_min} -> {self.map_max}"
        )

    def cell_index(self, position: Vector3) -> Tuple[int, int]:
        """Grid cell (x index, z index) a world position falls into."""
        last = self.resolution - 1
        indices = []
        for axis in HORIZONTAL_AXES:
            normalized = (position[axis] - self.map_min[axis]) / (
                self.map_max[axis] - self.map_min[axis]
            )
            index = int(round(normalized * last))
            indices.append(min(max(index, 0), last))
        return indices[0], indices[1]

    def rasterize(self, position: Vector3) -> Tuple[int, int]:
        """
        Add one unit of heat at a world position.

        Positions outside the map bounds land in the nearest edge cell.

        Returns:
            The (x, z) cell that was incremented
        """
        gx, gz = self.cell_index(position)
        self.cells[gx, gz] += 1.0
        return gx, gz

    def decay_all(self, elapsed_minutes: float) -> float:
        """
        Decay every cell for the elapsed time.

        Returns:
            The factor that was applied (1.0 when nothing changed)
        """
        factor = decay_factor(self.decay_rate_per_minute, elapsed_minutes)
        if factor < 1.0:
            self.cells *= factor
        return factor

    def snapshot(self) -> np.ndarray:
        """Copy of the current grid."""
        return self.cells.copy()

    def to_json(self, precision: Optional[int] = None) -> Dict[str, Any]:
        """
        JSON-serializable form: {"heatmap": [[...], ...]}, row-major on x.

        Args:
            precision: Optional number of decimals to round cells to
        """
        cells = self.cells if precision is None else np.round(self.cells, precision)
        return {"heatmap": cells.tolist()}

    @property
    def total_heat(self) -> float:
        return float(self.cells.sum())
