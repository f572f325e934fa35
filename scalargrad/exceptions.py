"""
Exceptions
==========

The engine's arithmetic never raises: degenerate inputs produce ``nan`` or
``inf`` and flow through the graph. The errors below cover misuse at the
boundaries only.
"""

from __future__ import annotations
from typing import Optional


class ScalargradError(Exception):
    """Base class for all scalargrad errors."""


class ShapeMismatch(ScalargradError, ValueError):
    """
    Raised when a unit receives an input whose length differs from its arity.

    Attributes:
        expected: Number of inputs the unit was built for.
        got: Number of inputs actually provided.
        unit: Optional description of the unit that rejected the input.
    """

    def __init__(self, expected: int, got: int, unit: Optional[str] = None) -> None:
        self.expected = expected
        self.got = got
        self.unit = unit
        where = f"{unit}: " if unit else ""
        super().__init__(f"{where}expected {expected} inputs, got {got}")


class GraphMismatch(ScalargradError, ValueError):
    """Raised when an operation references a node that is not live in its graph."""
