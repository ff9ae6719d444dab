"""
Hydraulic resistance models.

Usage:
    from dropnet.core.resistance_models import create_resistance_model
    model = create_resistance_model(0, continuous_viscosity=1e-3)
"""

from .base import ResistanceModel
from .rectangular import RectangularResistanceModel, shape_factor
from .volume_model import VolumeResistanceModel
from ...models.exceptions import ConfigurationError


def create_resistance_model(selector: int, continuous_viscosity: float = None) -> ResistanceModel:
    """Instantiate the model for a numeric ``resistance_model`` selector."""
    if selector == RectangularResistanceModel.selector:
        if continuous_viscosity is None:
            raise ConfigurationError("Rectangular resistance model needs the continuous phase viscosity.")
        return RectangularResistanceModel(continuous_viscosity)
    if selector == VolumeResistanceModel.selector:
        return VolumeResistanceModel()
    raise ConfigurationError(f"Unknown resistance model selector: {selector}")


__all__ = [
    'ResistanceModel',
    'RectangularResistanceModel',
    'VolumeResistanceModel',
    'create_resistance_model',
    'shape_factor',
]
