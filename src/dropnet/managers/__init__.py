from .chip_builder import ChipBuilder

__all__ = ["ChipBuilder"]
