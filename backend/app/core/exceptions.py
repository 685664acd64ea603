from typing import Optional

from fastapi import HTTPException, status

QUOTA_EXCEEDED = "QUOTA_EXCEEDED"


class InvalidChatRequestException(HTTPException):
    def __init__(self, detail: str = "Missing required fields: shop and message are required"):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail,
        )


class SessionAccessDeniedException(HTTPException):
    def __init__(self, detail: str = "Invalid session"):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=detail,
        )


class LLMBackendError(Exception):
    """Generic failure talking to a chat-completion backend."""


class QuotaExceededError(LLMBackendError):
    """Upstream quota or persistent rate limit. Callers switch to handoff messaging."""

    code = QUOTA_EXCEEDED

    def __init__(self, message: str = QUOTA_EXCEEDED):
        super().__init__(message)


class VectorIndexError(Exception):
    def __init__(self, message: str, *, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code
