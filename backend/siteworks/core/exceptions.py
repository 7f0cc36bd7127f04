"""
Domain exceptions raised by the decision services.
"""


class SiteworksError(Exception):
    """Base class for errors surfaced to API callers."""


class InvalidInputError(SiteworksError):
    """Caller supplied something unusable (non-numeric PIN, malformed feature)."""


class InvalidGeometryError(InvalidInputError):
    """Geometry failed normalisation (open ring, too few vertices, wrong type)."""


class ParcelNotFoundError(SiteworksError):
    """No cadastral polygon or sub-polygon matched the lookup."""


class NoParcelSelectedError(SiteworksError):
    """An operation needs a selected parcel and there is none."""


class SessionNotFoundError(SiteworksError):
    """Unknown map session id."""


class SubdivisionError(SiteworksError):
    """Subdivision workflow rejected or aborted."""


class StaleSelectionError(SiteworksError):
    """A newer selection superseded the one this result was computed for."""

    def __init__(self, issued_generation: int, current_generation: int):
        self.issued_generation = issued_generation
        self.current_generation = current_generation
        super().__init__(
            f"selection {issued_generation} superseded by {current_generation}"
        )
