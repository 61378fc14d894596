from typing import Any, Dict, Optional


# ===========================
# Base Application Error
# ===========================
class AppError(Exception):
    kind = "AppError"
    status_code = 500

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.kind, "detail": self.detail}


# ===========================
# Error Taxonomy
# ===========================
class ValidationError(AppError):
    """Missing or malformed input; the caller can fix it."""
    kind = "ValidationError"
    status_code = 400


class NetworkError(AppError):
    """Provider unreachable or timed out. Transient."""
    kind = "NetworkError"


class UpstreamError(AppError):
    """Provider answered with a non-2xx status or an unusable body."""
    kind = "UpstreamError"

    def __init__(self, detail: str, upstream_status: Optional[int] = None, body: Any = None):
        super().__init__(detail)
        self.upstream_status = upstream_status
        self.body = body

    @property
    def is_rejection(self) -> bool:
        return self.upstream_status is not None and 400 <= self.upstream_status < 500

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["status_code"] = self.upstream_status
        data["body"] = self.body
        return data


class AutomationError(AppError):
    """The provider page no longer matches the expected structure."""
    kind = "AutomationError"


class AutomationTimeoutError(AutomationError):
    kind = "TimeoutError"
