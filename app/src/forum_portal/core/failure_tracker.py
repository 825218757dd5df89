"""連続失敗回数に応じて外部呼び出しを一時停止する状態機械。"""

from __future__ import annotations

import enum
import time
from dataclasses import dataclass
from typing import Callable

from forum_portal.core import logging as app_logging


class ServiceState(str, enum.Enum):
    AVAILABLE = "available"
    COOLING_DOWN = "cooling_down"


@dataclass(frozen=True, slots=True)
class FailureState:
    """テストや監視用のスナップショット。"""

    state: ServiceState
    consecutive_failures: int
    last_attempt_at: float | None


class FailureTracker:
    """Available / Cooling-down の 2 状態を持つ失敗トラッカー。

    - 連続失敗が `threshold` に達すると Cooling-down へ遷移する
    - 最終試行から `cooldown_seconds` 経過すると次の 1 回だけを復帰確認として通す
    - 復帰確認の結果が記録されるまで、他の呼び出しは拒否する
    - 成功すれば即座にカウンタを 0 に戻して Available へ戻る
    """

    def __init__(
        self,
        *,
        threshold: int = 3,
        cooldown_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if threshold < 1:
            raise ValueError("threshold は 1 以上で指定してください。")
        self._threshold = threshold
        self._cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._state = ServiceState.AVAILABLE
        self._consecutive_failures = 0
        self._last_attempt_at: float | None = None
        self._recovery_pending = False

    @property
    def state(self) -> ServiceState:
        return self._state

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    def snapshot(self) -> FailureState:
        return FailureState(
            state=self._state,
            consecutive_failures=self._consecutive_failures,
            last_attempt_at=self._last_attempt_at,
        )

    def reset(self) -> None:
        self._state = ServiceState.AVAILABLE
        self._consecutive_failures = 0
        self._last_attempt_at = None
        self._recovery_pending = False

    def remaining_cooldown(self) -> float:
        """クールダウン終了までの残り秒数。Available なら 0。"""

        if self._state is ServiceState.AVAILABLE or self._last_attempt_at is None:
            return 0.0
        elapsed = self._clock() - self._last_attempt_at
        return max(self._cooldown_seconds - elapsed, 0.0)

    def allow_request(self) -> bool:
        """呼び出しを通してよいか判定し、通す場合は試行時刻を記録する。"""

        if self._state is ServiceState.COOLING_DOWN:
            if self.remaining_cooldown() > 0:
                return False
            self._transition(ServiceState.AVAILABLE)
            self._recovery_pending = True
        elif self._recovery_pending and not self._recovery_expired():
            return False
        self._last_attempt_at = self._clock()
        return True

    def record_success(self) -> None:
        self._consecutive_failures = 0
        self._recovery_pending = False
        if self._state is not ServiceState.AVAILABLE:
            self._transition(ServiceState.AVAILABLE)

    def record_failure(self) -> None:
        self._consecutive_failures += 1
        self._recovery_pending = False
        if self._last_attempt_at is None:
            self._last_attempt_at = self._clock()
        if self._consecutive_failures >= self._threshold:
            self._transition(ServiceState.COOLING_DOWN)

    def _recovery_expired(self) -> bool:
        # 結果が記録されないまま放置された復帰確認は、クールダウン幅で打ち切る
        if self._last_attempt_at is None:
            return True
        return self._clock() - self._last_attempt_at >= self._cooldown_seconds

    def _transition(self, new_state: ServiceState) -> None:
        if new_state is self._state:
            return
        app_logging.log_event(
            "SERVICE_STATE",
            f"{self._state.value} -> {new_state.value}",
            consecutive_failures=self._consecutive_failures,
        )
        self._state = new_state
