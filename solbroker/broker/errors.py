"""Broker error taxonomy.

Every failure aborts the request's pipeline and is converted to the
``{ok: false, error}`` envelope at the HTTP boundary. ``status_code`` is
the HTTP status that envelope is sent with. Nothing here is retried.
"""


class BrokerError(Exception):
    """Base class for all broker failures."""

    status_code: int = 500


class UnknownVersionError(BrokerError):
    """Requested version is not in the current catalog snapshot."""

    status_code = 400

    def __init__(self, version: str) -> None:
        self.version = version
        super().__init__("invalid version")


class CatalogRefreshError(BrokerError):
    """An upstream release index could not be fetched or parsed."""

    status_code = 503


class AcquisitionError(BrokerError):
    """A compiler artifact could not be downloaded."""

    status_code = 502

    def __init__(self, message: str, *, upstream_status: int | None = None) -> None:
        self.upstream_status = upstream_status
        super().__init__(message)


class InputValidationError(BrokerError):
    """Malformed request shape or a source entry without content."""

    status_code = 400

    def __init__(self, message: str, *, violations: list[str] | None = None) -> None:
        self.violations = list(violations or [])
        super().__init__(message)


class UnsupportedLegacyConfigError(BrokerError):
    """A legacy entrypoint cannot serve this request."""

    status_code = 400


class InvocationError(BrokerError):
    """The compiler process or interpreter host failed."""

    status_code = 500


class CompilerCrashError(InvocationError):
    """Process produced no output but wrote diagnostics.

    The message is the captured stderr, verbatim.
    """

    def __init__(self, stderr: str) -> None:
        self.stderr = stderr
        super().__init__(stderr)


class OutputParseError(InvocationError):
    """Compiler output was not well-formed JSON."""


class InvocationTimeoutError(InvocationError):
    """Compilation exceeded the per-invocation wall-clock limit."""

    status_code = 504
