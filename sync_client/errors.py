"""Errors surfaced by the story sync client."""


class SyncClientError(Exception):
    """Base class for client-side sync failures."""


class NotConnectedError(SyncClientError):
    """The operation needs a live connection and there is none."""


class ContributionRejected(SyncClientError):
    """The server answered a contribution with an error event."""

    def __init__(self, message: str, code: str) -> None:
        super().__init__(message)
        self.code = code


class ContributionTimeout(SyncClientError):
    """No acknowledgement arrived before the deadline."""
