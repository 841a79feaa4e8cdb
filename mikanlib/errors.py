"""Error taxonomy for the resolution and reconciliation engine."""


class MikanlibError(Exception):
    """Base class for all engine errors."""


class NetworkError(MikanlibError):
    """Raised when a request still fails after its retry budget is spent."""


class ParseError(MikanlibError):
    """Raised when feed or page markup does not contain the expected anchors."""


class ResolutionError(MikanlibError):
    """Raised when a catalog lookup chain cannot produce an identity."""


class CacheError(MikanlibError):
    """Raised when the SQLite store cannot be read or written."""
