from .chip_graph import ChipGraph, ValidityReport, Violation

__all__ = ["ChipGraph", "ValidityReport", "Violation"]
