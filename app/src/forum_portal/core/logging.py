"""JSONロギングの共通ヘルパー。

HTTP リクエスト単位のログに加えて、Graph API 呼び出しの試行・成功・失敗を
1 行 1 JSON で出力する。リトライ制御はこのモジュールの関数だけを経由して
ログを出すため、テストではここをパッチすれば呼び出し履歴を観測できる。
"""

from __future__ import annotations

import json
import logging
import traceback
from typing import Any

_LOGGER = logging.getLogger("forum_portal")


def log_request(*, path: str, status: int, request_id: str, latency_ms: int) -> None:
    payload = {
        "level": "INFO",
        "path": path,
        "status": status,
        "request_id": request_id,
        "latency_ms": latency_ms,
    }
    _LOGGER.info(json.dumps(payload, ensure_ascii=False))


def log_error(
    *,
    path: str,
    status: int,
    request_id: str,
    latency_ms: int,
    error: Any,
) -> None:
    payload = {
        "level": "ERROR",
        "path": path,
        "status": status,
        "request_id": request_id,
        "latency_ms": latency_ms,
        "error_json": _to_error_json(error),
        "traceback": traceback.format_exc(),
    }
    _LOGGER.error(json.dumps(payload, ensure_ascii=False))


def log_api_request(*, method: str, endpoint: str, context: str | None = None) -> None:
    payload = {
        "level": "INFO",
        "kind": "API_REQUEST",
        "method": method,
        "endpoint": endpoint,
        "context": context,
    }
    _LOGGER.info(json.dumps(payload, ensure_ascii=False))


def log_api_response(
    *, method: str, endpoint: str, status: int | str, duration_ms: int
) -> None:
    payload = {
        "level": "INFO",
        "kind": "API_RESPONSE",
        "method": method,
        "endpoint": endpoint,
        "status": status,
        "duration_ms": duration_ms,
    }
    _LOGGER.info(json.dumps(payload, ensure_ascii=False))


def log_api_error(
    *,
    method: str,
    endpoint: str,
    error: Any,
    duration_ms: int | None = None,
    context: str | None = None,
) -> None:
    payload = {
        "level": "ERROR",
        "kind": "API_ERROR",
        "method": method,
        "endpoint": endpoint,
        "status": getattr(error, "status_code", None) or "UNKNOWN",
        "duration_ms": duration_ms,
        "error_json": _to_error_json(error),
        "context": context,
    }
    _LOGGER.error(json.dumps(payload, ensure_ascii=False))


def log_auth_failure(*, reason: str, details: str | None = None) -> None:
    payload = {
        "level": "ERROR",
        "kind": "AUTH_FAILURE",
        "reason": reason,
        "details": details,
    }
    _LOGGER.error(json.dumps(payload, ensure_ascii=False))


def log_throttling(*, endpoint: str, retry_after_ms: int, attempt: int) -> None:
    payload = {
        "level": "WARNING",
        "kind": "THROTTLING",
        "endpoint": endpoint,
        "retry_after_ms": retry_after_ms,
        "attempt": attempt,
    }
    _LOGGER.warning(json.dumps(payload, ensure_ascii=False))


def log_retry(*, endpoint: str, attempt: int, max_retries: int, delay_ms: int, reason: str) -> None:
    payload = {
        "level": "INFO",
        "kind": "RETRY",
        "endpoint": endpoint,
        "attempt": attempt,
        "max_retries": max_retries,
        "delay_ms": delay_ms,
        "reason": reason,
    }
    _LOGGER.info(json.dumps(payload, ensure_ascii=False))


def log_event(kind: str, message: str, **fields: Any) -> None:
    """トークン破棄・キャッシュ更新・登録などの業務イベントを記録する。"""

    payload = {"level": "INFO", "kind": kind, "message": message, **fields}
    _LOGGER.info(json.dumps(payload, ensure_ascii=False, default=str))


def _to_error_json(error: Any) -> str:
    if isinstance(error, (dict, list)):
        return json.dumps(error, ensure_ascii=False)
    return json.dumps({"message": str(error)}, ensure_ascii=False)
