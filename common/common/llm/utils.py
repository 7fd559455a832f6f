from __future__ import annotations


AUTH_ERROR_STATUSES = frozenset({401, 403})
RATE_LIMIT_STATUS = 429


def normalize_model_name(model_name: str) -> str:
    """모델 이름을 정규화하여 응답 메타데이터/로그 식별자로 사용할 수 있게 한다.

    규칙:
    1. Provider Prefix 제거: '/'가 포함된 경우 마지막 부분만 사용한다.
       예: "openai/gpt-4o-mini" -> "gpt-4o-mini"
    """
    if not model_name:
        return "unknown"

    value = model_name.strip()
    if "/" in value:
        value = value.split("/")[-1].strip()
    return value or "unknown"


def extract_status_code(exc: BaseException) -> int | None:
    """LLM SDK 예외에서 HTTP 상태 코드를 꺼낸다.

    openai SDK 는 exc.status_code, httpx 기반 예외는 exc.response.status_code 에 담는다.
    """
    status_code = getattr(exc, "status_code", None)
    if isinstance(status_code, int):
        return status_code

    response = getattr(exc, "response", None)
    response_status = getattr(response, "status_code", None)
    if isinstance(response_status, int):
        return response_status
    return None


def is_auth_error(exc: BaseException) -> bool:
    if extract_status_code(exc) in AUTH_ERROR_STATUSES:
        return True
    message = str(exc).lower()
    return "invalid api key" in message or "incorrect api key" in message or "unauthorized" in message


def is_rate_limit_error(exc: BaseException) -> bool:
    if extract_status_code(exc) == RATE_LIMIT_STATUS:
        return True

    try:
        from google.api_core.exceptions import ResourceExhausted  # type: ignore

        if isinstance(exc, ResourceExhausted):
            return True
    except Exception:  # noqa: BLE001
        pass

    message = str(exc).lower()
    return (
        "rate limit" in message
        or "too many requests" in message
        or "resource exhausted" in message
    )

