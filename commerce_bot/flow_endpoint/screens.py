"""Flow screen names, request classification and response shape."""

from enum import Enum
from typing import Any, Optional


class FlowScreen(str, Enum):
    BASIC_INFO = "BASIC_INFO"
    ADDITIONAL_INFO = "ADDITIONAL_INFO"
    SUCCESS = "SUCCESS"


class FlowRequestKind(str, Enum):
    HEALTH_CHECK = "health_check"
    INITIAL_LOAD = "initial_load"
    SUBMISSION = "submission"
    UNKNOWN = "unknown"


DEFAULT_FLOW_VERSION = "3.0"


def request_data(request: dict) -> dict:
    data = request.get("data")
    return data if isinstance(data, dict) else {}


def classify_flow_request(request: dict) -> FlowRequestKind:
    """Tag a decrypted request once so screen handlers never re-inspect its fields."""
    action = (request.get("action") or "").lower()
    screen = request.get("screen") or ""

    if action == "ping":
        return FlowRequestKind.HEALTH_CHECK
    if not action and not screen and not request_data(request):
        return FlowRequestKind.HEALTH_CHECK
    if not action or action in ("init", "back"):
        return FlowRequestKind.INITIAL_LOAD
    if action == "data_exchange":
        return FlowRequestKind.SUBMISSION
    return FlowRequestKind.UNKNOWN


def flow_response(request: dict, screen: Optional[str] = None, data: Optional[dict[str, Any]] = None) -> dict:
    version = request.get("version")
    return {
        "version": str(version) if version else DEFAULT_FLOW_VERSION,
        "screen": screen if screen is not None else (request.get("screen") or ""),
        "data": data if data is not None else {},
    }


def with_errors(request: dict, errors: dict[str, str]) -> dict:
    """Stay on the current screen, echoing the submitted data with inline errors."""
    return flow_response(request, data={**request_data(request), "errors": errors})
