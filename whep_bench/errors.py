"""Errors raised by a single benchmark session.

Every error is scoped to the session that raised it: the runner catches
them, logs them and reports the session as disconnected.
"""


class WhepError(Exception):
    """Base class for session errors."""


class UrlError(WhepError):
    """The target URL could not be parsed."""


class ServerError(WhepError):
    """The signaling request failed or the response was malformed."""


class SdpError(WhepError):
    """A session description was missing, unparsable or rejected."""


class TransportError(WhepError):
    """The transport engine rejected an input or failed to produce output."""


class NetworkError(WhepError):
    """The UDP socket failed (anything other than a timeout)."""
