"""Exceptions raised by lane_pathfind.

Missing files are never exceptions; they are warnings recorded on the lane.
Everything here is fatal for the step that raised it.
"""

__all__ = [
    "PathFindError",
    "ConfigurationError",
    "ReferenceLookupError",
    "ReferenceNotFoundError",
    "AmbiguousReferenceError",
    "DestinationExistsError",
]


class PathFindError(Exception):
    """Base exception for all lane_pathfind errors."""

    pass


class ConfigurationError(PathFindError):
    """Raised when options or configuration are inconsistent."""

    pass


class ReferenceLookupError(PathFindError):
    """Raised when a reference genome name cannot be turned into one file."""

    def __init__(self, message="", reference=None, matches=None):
        super().__init__(message)
        self.reference = reference
        self.matches = list(matches or [])


class ReferenceNotFoundError(ReferenceLookupError):
    """No sequence file matches the reference name."""

    pass


class AmbiguousReferenceError(ReferenceLookupError):
    """More than one sequence file matches the reference name."""

    pass


class DestinationExistsError(PathFindError):
    """Raised when an output path exists and overwriting was not requested."""

    def __init__(self, path):
        super().__init__(
            f'output "{path}" already exists; not overwriting. '
            "Use --force to overwrite it"
        )
        self.path = path
