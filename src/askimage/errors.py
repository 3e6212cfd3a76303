from __future__ import annotations


class AskImageError(RuntimeError):
    pass


class InvalidFormatError(AskImageError, ValueError):
    """A credential or URL failed local validation; never sent over the wire."""


class ImageProcessingError(AskImageError):
    pass


class TransportError(AskImageError):
    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
