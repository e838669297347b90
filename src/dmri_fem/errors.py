"""
Exception types raised by assembly and time stepping.

Every error carries the stage context that was known when it was raised
(compartment, boundary, interval, substep) so a failing solve can be traced
back to the offending piece of input.
"""

from typing import Optional


class DMRIError(Exception):
    """Base class for dmri_fem errors."""

    def __init__(
        self,
        message: str,
        compartment: Optional[int] = None,
        boundary: Optional[int] = None,
        interval: Optional[int] = None,
        substep: Optional[int] = None,
    ):
        self.message = message
        self.compartment = compartment
        self.boundary = boundary
        self.interval = interval
        self.substep = substep
        super().__init__(self._format())

    def _format(self) -> str:
        context = [
            f"{name}={value}"
            for name, value in (
                ("compartment", self.compartment),
                ("boundary", self.boundary),
                ("interval", self.interval),
                ("substep", self.substep),
            )
            if value is not None
        ]
        if not context:
            return self.message
        return f"{self.message} ({', '.join(context)})"


class MeshValidationError(DMRIError, ValueError):
    """Malformed connectivity, facet indices or degenerate elements."""


class ConfigurationError(DMRIError, ValueError):
    """Solver configuration or gradient profile not usable by the solver."""


class LinearAlgebraError(DMRIError, RuntimeError):
    """Singular or ill-conditioned system met while stepping."""
