
class CriteriaError(Exception):
    """Base class for errors raised by the criteria compiler."""

class GeneratorError(CriteriaError):
    """The external criteria generator failed for a technical reason."""

class UnsafeIdentifierError(CriteriaError, ValueError):
    """A dataset or column name cannot be used as a SQL identifier."""
