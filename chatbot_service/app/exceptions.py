from __future__ import annotations


class ChatServiceError(Exception):
    """Base exception for all chatbot-service errors."""


class ChatConfigurationError(ChatServiceError):
    """The upstream model cannot be used as configured (missing model or API key)."""


class InvalidChatRequestError(ChatServiceError):
    """The chat request failed validation. `code` is the wire error code."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


class UnknownPersonalityError(InvalidChatRequestError):
    def __init__(self, mode: str) -> None:
        super().__init__("INVALID_PERSONALITY", f"Unknown personality mode: {mode}")
        self.mode = mode
