from __future__ import annotations


class AppError(Exception):
    """Base application error."""

    def __init__(self, detail: str = "") -> None:
        self.detail = detail
        super().__init__(detail)


class ValidationError(AppError):
    """Message text rejected before any network call."""


class ForbiddenError(AppError):
    pass


class FetchError(AppError):
    pass


class SendError(AppError):
    pass


class ChannelConnectionError(AppError):
    """Live channel lost or unreachable; polling takes over."""


class ChannelRejectedError(AppError):
    """Server refused the connection or a conversation subscription."""
