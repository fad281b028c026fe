from enum import Enum
from typing import Any, Dict, Optional, Tuple
import logging
import traceback

logger = logging.getLogger(__name__)


class ErrorType(Enum):
    SECRET_UNAVAILABLE = "secret_unavailable"
    SERVER_TIME_UNAVAILABLE = "server_time_unavailable"
    TOKEN_ACQUISITION_FAILED = "token_acquisition_failed"
    UPSTREAM_ERROR = "upstream_error"
    UNKNOWN_ERROR = "unknown_error"


class SpotBridgeError(Exception):
    """Base class for errors raised by the token broker and its collaborators"""

    error_type = ErrorType.UNKNOWN_ERROR
    status_code = 500

    def __init__(self, message: str, details: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class SecretUnavailable(SpotBridgeError):
    error_type = ErrorType.SECRET_UNAVAILABLE
    status_code = 500


class ServerTimeUnavailable(SpotBridgeError):
    error_type = ErrorType.SERVER_TIME_UNAVAILABLE
    status_code = 503


class TokenAcquisitionFailed(SpotBridgeError):
    error_type = ErrorType.TOKEN_ACQUISITION_FAILED
    status_code = 500


class UpstreamError(SpotBridgeError):
    """Non-success response (or transport failure) from a Spotify endpoint.

    ``status`` is None when the request never produced a response.
    """

    error_type = ErrorType.UPSTREAM_ERROR
    status_code = 502

    def __init__(self, message: str, status: Optional[int] = None, body: str = ""):
        super().__init__(message, details=body[:500] if body else None)
        self.status = status
        self.body = body


class ErrorHandler:
    """Maps broker errors to the structured payloads the desktop UI understands"""

    @staticmethod
    def to_response(exc: Exception) -> Tuple[int, Dict[str, Any]]:
        if isinstance(exc, SpotBridgeError):
            payload: Dict[str, Any] = {
                "error": exc.message,
                "type": exc.error_type.value,
            }
            if exc.details:
                payload["details"] = exc.details
            if isinstance(exc, UpstreamError) and exc.status is not None:
                payload["upstreamStatus"] = exc.status
            return exc.status_code, payload
        return ErrorHandler.handle_unknown_error(exc)

    @staticmethod
    def handle_unknown_error(exception: Exception) -> Tuple[int, Dict[str, Any]]:
        logger.error(f"Unknown error: {str(exception)}\n{traceback.format_exc()}")
        return 500, {
            "error": "An unexpected error occurred",
            "type": ErrorType.UNKNOWN_ERROR.value,
            "details": str(exception),
        }


def is_token_error(exc: SpotBridgeError) -> bool:
    return exc.error_type in (
        ErrorType.SECRET_UNAVAILABLE,
        ErrorType.SERVER_TIME_UNAVAILABLE,
        ErrorType.TOKEN_ACQUISITION_FAILED,
    )
