"""
Parsing error taxonomy.

The pipeline reports these by name in ParseResult.failure rather than
raising them; ParseResult.raise_for_failure() converts back to an exception.
"""
from typing import List, Optional


class ParseError(Exception):
    """Base exception for agent output parsing failures."""

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        self.errors = errors if errors is not None else [message]
        super().__init__(message)


class ExtractionError(ParseError):
    """No JSON object could be isolated from the model text."""
    pass


class StructuralError(ParseError):
    """The JSON payload does not have the required shape."""
    pass


class SemanticError(ParseError):
    """A cross-field invariant of the normalized object is violated."""
    pass


class SemanticWarning(UserWarning):
    """Category of non-fatal data-quality findings."""
    pass


FAILURE_TYPES = {
    cls.__name__: cls for cls in (ParseError, ExtractionError, StructuralError, SemanticError)
}
