"""Exception hierarchy shared by the registries, the control loop and the consoles.

Registry and control-loop operations catch these internally and resolve to a
boolean outcome; argument validation and robot info queries let them reach the caller.
"""

from __future__ import annotations


class HrpServerError(Exception):
    """Base exception for all server errors."""

    pass


class ValidationError(HrpServerError):
    """Bad index, unknown path or malformed arguments. Nothing was mutated."""

    pass


class UnknownCommandError(ValidationError):
    """Command name is not in the dispatch table."""

    pass


class ExclusivityError(HrpServerError):
    """Robot or controller already belongs to an active connection."""

    pass


class TransientIOError(HrpServerError):
    """A probe, read or acknowledgment failed; retried on the next tick."""

    pass


class ResourceTeardownError(HrpServerError):
    """Closing a link or channel failed during unbind."""

    pass


class DriverLoadError(HrpServerError):
    """A controller driver or robot protocol module could not be loaded."""

    pass
