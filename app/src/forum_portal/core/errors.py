"""Graph 連携レイヤーで使う例外の分類。"""

from __future__ import annotations


class ForumPortalError(RuntimeError):
    """このパッケージが送出する例外の基底クラス。"""


class RemoteApiError(ForumPortalError):
    """Graph API が 2xx 以外を返したことを表す。"""

    def __init__(
        self,
        message: str,
        status_code: int,
        *,
        retry_after: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.retry_after = retry_after


class AuthenticationError(ForumPortalError):
    """アクセストークンを取得できなかった。"""


class PermissionDeniedError(ForumPortalError):
    """403。メールボックス権限かアプリの同意設定を見直す必要がある。"""

    status_code = 403


class ResourceNotFoundError(ForumPortalError):
    """404。リトライしても存在しないものは現れない。"""

    status_code = 404


class ConflictError(ForumPortalError):
    """412。変更トークンが一致せず、更新が他のリクエストと衝突した。"""

    status_code = 412


class RetryExhaustedError(ForumPortalError):
    """最大試行回数に達しても成功しなかった。"""

    def __init__(self, message: str, last_error: BaseException | None = None) -> None:
        super().__init__(message)
        self.last_error = last_error


class ServiceUnavailableError(ForumPortalError):
    """外部サービスが一時的に利用できない（クールダウン中を含む）。"""

    def __init__(self, message: str = "Calendar service is temporarily unavailable") -> None:
        super().__init__(message)
