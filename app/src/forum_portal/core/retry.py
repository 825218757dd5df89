"""Graph API 呼び出しのリトライ制御。"""

from __future__ import annotations

import asyncio
import math
import random
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from forum_portal.core import logging as app_logging
from forum_portal.core.errors import (
    ConflictError,
    PermissionDeniedError,
    ResourceNotFoundError,
    RetryExhaustedError,
)

T = TypeVar("T")

SleepFunc = Callable[[float], Awaitable[None]]


@dataclass(frozen=True, slots=True)
class RetryConfig:
    """リトライ回数と待機時間（ミリ秒）の上限。"""

    max_retries: int = 3
    base_delay_ms: int = 1000
    max_delay_ms: int = 30000


DEFAULT_RETRY_CONFIG = RetryConfig()


def calculate_backoff_delay(
    attempt: int,
    config: RetryConfig = DEFAULT_RETRY_CONFIG,
    *,
    rng: Callable[[], float] = random.random,
) -> int:
    """指数バックオフに 10〜20% のジッターを加えた待機時間（ミリ秒）を返す。"""

    delay = min(config.base_delay_ms * (2**attempt), config.max_delay_ms)
    jitter = delay * (0.1 + rng() * 0.1)
    return math.floor(delay + jitter)


def parse_retry_after_ms(value: str | None) -> int | None:
    """`Retry-After`（秒）をミリ秒に変換する。日付形式や不正値は None。"""

    if value is None:
        return None
    try:
        seconds = int(value.strip())
    except ValueError:
        return None
    if seconds < 0:
        return None
    return seconds * 1000


def _status_of(error: BaseException) -> int | None:
    status = getattr(error, "status_code", None)
    return status if isinstance(status, int) else None


class RemoteCallExecutor:
    """リモート呼び出しを実行し、失敗を分類してリトライ可否を判断する。

    - 401: `on_unauthorized` でトークンを破棄してからリトライ
    - 403 / 404 / 412: リトライせず即座に送出
    - 429: `Retry-After` があればそれに従い、無ければバックオフ
    - その他: 指数バックオフでリトライ

    `max_retries + 1` 回失敗した場合は `RetryExhaustedError` を送出する。
    """

    def __init__(
        self,
        *,
        config: RetryConfig = DEFAULT_RETRY_CONFIG,
        on_unauthorized: Callable[[], None] | None = None,
        sleep: SleepFunc = asyncio.sleep,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self._config = config
        self._on_unauthorized = on_unauthorized
        self._sleep = sleep
        self._rng = rng

    @property
    def config(self) -> RetryConfig:
        return self._config

    async def execute(
        self,
        method: str,
        endpoint: str,
        operation: Callable[[], Awaitable[T]],
        *,
        context: str | None = None,
    ) -> T:
        max_retries = self._config.max_retries
        last_error: BaseException | None = None

        for attempt in range(max_retries + 1):
            started = time.perf_counter()
            app_logging.log_api_request(method=method, endpoint=endpoint, context=context)
            try:
                result = await operation()
            except Exception as exc:
                last_error = exc
                duration_ms = int((time.perf_counter() - started) * 1000)
                delay_ms = self._handle_failure(
                    exc,
                    method=method,
                    endpoint=endpoint,
                    attempt=attempt,
                    duration_ms=duration_ms,
                    context=context,
                )
            else:
                duration_ms = int((time.perf_counter() - started) * 1000)
                app_logging.log_api_response(
                    method=method, endpoint=endpoint, status="SUCCESS", duration_ms=duration_ms
                )
                return result

            if attempt < max_retries:
                await self._sleep(delay_ms / 1000)

        message = str(last_error) if last_error is not None else "unknown error"
        raise RetryExhaustedError(
            f"Failed after {max_retries + 1} attempts: {message}",
            last_error=last_error,
        ) from last_error

    def _handle_failure(
        self,
        error: BaseException,
        *,
        method: str,
        endpoint: str,
        attempt: int,
        duration_ms: int,
        context: str | None,
    ) -> int:
        """失敗を分類し、次の試行までの待機時間（ミリ秒）を返す。"""

        status = _status_of(error)
        max_retries = self._config.max_retries

        if status == 401:
            app_logging.log_auth_failure(reason="401 Unauthorized", details=endpoint)
            if self._on_unauthorized is not None:
                self._on_unauthorized()
            delay_ms = self._backoff(attempt)
            if attempt < max_retries:
                app_logging.log_retry(
                    endpoint=endpoint,
                    attempt=attempt + 1,
                    max_retries=max_retries,
                    delay_ms=delay_ms,
                    reason="401",
                )
            return delay_ms

        if status == 403:
            app_logging.log_api_error(
                method=method,
                endpoint=endpoint,
                error=error,
                duration_ms=duration_ms,
                context="403 Forbidden - Access denied to mailbox or resource",
            )
            raise PermissionDeniedError(
                f"Access denied to {endpoint}. "
                "Check mailbox permissions and application consent."
            ) from error

        if status == 404:
            app_logging.log_api_error(
                method=method,
                endpoint=endpoint,
                error=error,
                duration_ms=duration_ms,
                context="404 Not Found - Resource does not exist",
            )
            raise ResourceNotFoundError(f"Resource not found: {endpoint}") from error

        if status == 412:
            app_logging.log_api_error(
                method=method,
                endpoint=endpoint,
                error=error,
                duration_ms=duration_ms,
                context="412 Precondition Failed - Change key mismatch",
            )
            raise ConflictError(f"Concurrent modification of {endpoint}") from error

        if status == 429:
            retry_after_ms = parse_retry_after_ms(getattr(error, "retry_after", None))
            delay_ms = retry_after_ms if retry_after_ms is not None else self._backoff(attempt)
            app_logging.log_throttling(
                endpoint=endpoint, retry_after_ms=delay_ms, attempt=attempt + 1
            )
            return delay_ms

        app_logging.log_api_error(
            method=method,
            endpoint=endpoint,
            error=error,
            duration_ms=duration_ms,
            context=f"Attempt {attempt + 1}" + (f" - {context}" if context else ""),
        )
        delay_ms = self._backoff(attempt)
        if attempt < max_retries:
            app_logging.log_retry(
                endpoint=endpoint,
                attempt=attempt + 1,
                max_retries=max_retries,
                delay_ms=delay_ms,
                reason=str(status or type(error).__name__),
            )
        return delay_ms

    def _backoff(self, attempt: int) -> int:
        return calculate_backoff_delay(attempt, self._config, rng=self._rng)
