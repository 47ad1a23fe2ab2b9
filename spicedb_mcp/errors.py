"""
Error types raised by the SpiceDB client and the tool layer.

Every error derives from SpiceDBError so the dispatch boundary in server.py
can catch the whole family in one place and turn it into an MCP error result:

- FormatError: relationship text does not follow
  ``resourceType:resourceId#relation@subjectType:subjectId[#subjectRelation]``
- ApiError: the backend answered with a non-2xx status (or streamed an error)
- ParseError: a line of the backend response was not valid JSON
- ValidationError: a tool invocation is missing a required field
- BackendConnectionError: the backend could not be reached at all

None of these are retried. Transient backend failures are reported to the
caller, who can simply invoke the tool again.
"""


class SpiceDBError(Exception):
    """
    Base class for all errors raised by this package.

    Attributes:
        message: Human-readable description, safe to show to the MCP caller
    """

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class FormatError(SpiceDBError):
    """Raised when relationship text cannot be parsed."""


class ValidationError(SpiceDBError):
    """Raised before any network call when a required field is missing."""


class ApiError(SpiceDBError):
    """
    Raised when the backend rejects a request.

    Attributes:
        status: HTTP status code returned by the backend
        body: Raw response body, kept verbatim for diagnosis
    """

    def __init__(self, status: int, body: str):
        self.status = status
        self.body = body
        super().__init__(f"SpiceDB API error ({status}): {body}")


class ParseError(SpiceDBError):
    """
    Raised when a response line is not valid JSON.

    Attributes:
        line: The offending line
    """

    def __init__(self, line: str):
        self.line = line
        super().__init__(f"Failed to parse JSON line: {line}")


class BackendConnectionError(SpiceDBError):
    """Raised when the HTTP call itself fails (DNS, refused connection, timeout)."""
