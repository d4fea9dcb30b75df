"""Error taxonomy for train status resolution."""

from treninfo.core.models import Choice


class TreninfoError(Exception):
    """Base class for everything the engine and its collaborators raise."""


class SelectionRequired(TreninfoError):
    """More than one run shares the requested number; the caller must pick one."""

    def __init__(self, choices: tuple[Choice, ...], message: str = "") -> None:
        super().__init__(message or "Multiple runs match this train number")
        self.choices = choices


class NoData(TreninfoError):
    """Backend answered but no usable train was found."""


class UpstreamError(TreninfoError):
    """Backend returned a logical error or a shape nobody recognizes."""


class TransportError(TreninfoError):
    """Network failure, timeout or a deliberately cancelled request."""

    def __init__(self, message: str, cancelled: bool = False) -> None:
        super().__init__(message)
        self.cancelled = cancelled
