"""
Custom exceptions for the gribslicer package.

Each exception maps to one failure class of the fetch and assemble pipeline.
With the exception of InvalidParameterError, they are contained at the
smallest unit (a single fetch task or a variable/member unit) and surfaced
as counts in the run report rather than aborting a run.
"""


class GribSlicerError(Exception):
    """Base exception class for all gribslicer errors."""
    pass


class TransportError(GribSlicerError):
    """
    Raised when an index or slice retrieval fails.

    Covers connection errors, timeouts and non-success HTTP statuses once
    all retries are exhausted. Reduces coverage, never aborts the run.
    """
    pass


class MalformedMetadataError(GribSlicerError):
    """
    Raised when an index resource fails structural validation.

    The affected lead time is treated as unavailable.
    """
    pass


class SelectionEmpty(GribSlicerError):
    """
    Raised when no index entry matches a requested variable at any lead time.

    Only raised when strict selection is enabled; otherwise the condition
    is logged as a warning.
    """

    def __init__(self, variables):
        self.variables = tuple(variables)
        super().__init__(
            f"No index entries matched variable(s): {', '.join(self.variables)}"
        )


class MergeError(GribSlicerError):
    """
    Raised when the array transform fails to merge, combine or crop.

    Isolated to one variable/member unit.
    """
    pass


class IntegrityError(GribSlicerError):
    """
    Raised when a fetched slice is empty or does not have its declared length.

    The partial content is discarded and the slice is treated as absent.
    """
    pass


class InvalidParameterError(GribSlicerError):
    """
    Raised for invalid user inputs.

    Used for malformed dates, unsupported cycles or products, negative
    member numbers and inconsistent configuration values.
    """
    pass
