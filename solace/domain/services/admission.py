"""
アドミッション制御
スライディングウィンドウ方式の2系統のレート制限

- 一般リクエスト: ユーザーまたは IP 単位（REST と WebSocket ハンドシェイク）
- メッセージ送信: ユーザー単位（より厳しい）
"""

import math
import time
from collections import defaultdict, deque
from collections.abc import Callable
from dataclasses import dataclass

from ...core.exceptions import RateLimited
from ...core.logging import get_logger, log_business_event

logger = get_logger("admission")


@dataclass
class RateLimitDecision:
    """レート制限の判定結果"""

    allowed: bool
    limit: int
    remaining: int
    reset: int
    retry_after: int = 0

    def headers(self) -> dict[str, str]:
        """HTTP レスポンスヘッダー"""
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset),
        }
        if not self.allowed:
            headers["Retry-After"] = str(self.retry_after)
        return headers


class SlidingWindowRateLimiter:
    """
    インメモリレート制限

    スライディングウィンドウ方式でキーごとのリクエスト数を制限。
    拒否したリクエストは記録しない（部分的な受け入れはしない）。
    """

    # メモリ保護: キー数がこれを超えたら期限切れのキーをパージ
    MAX_KEYS = 10000

    def __init__(
        self,
        max_requests: int,
        window_seconds: int,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_requests <= 0 or window_seconds <= 0:
            raise ValueError("max_requests and window_seconds must be positive")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._requests: dict[str, deque[float]] = defaultdict(deque)

    def check(self, key: str) -> RateLimitDecision:
        """
        リクエストが許可されるか確認し、許可されれば記録

        Args:
            key: クライアント識別子

        Returns:
            RateLimitDecision: 判定結果
        """
        now = self._clock()
        cutoff = now - self.window_seconds

        if len(self._requests) > self.MAX_KEYS:
            self._purge(cutoff)

        timestamps = self._requests[key]
        while timestamps and timestamps[0] <= cutoff:
            timestamps.popleft()

        if len(timestamps) >= self.max_requests:
            oldest = timestamps[0]
            retry_after = math.ceil(oldest + self.window_seconds - now)
            retry_after = max(1, min(self.window_seconds, retry_after))
            return RateLimitDecision(
                allowed=False,
                limit=self.max_requests,
                remaining=0,
                reset=int(time.time() + retry_after),
                retry_after=retry_after,
            )

        timestamps.append(now)
        return RateLimitDecision(
            allowed=True,
            limit=self.max_requests,
            remaining=self.max_requests - len(timestamps),
            reset=int(time.time() + self.window_seconds),
        )

    def reset(self, key: str | None = None) -> None:
        """記録をクリア（key 未指定で全キー）"""
        if key is None:
            self._requests.clear()
        else:
            self._requests.pop(key, None)

    def _purge(self, cutoff: float) -> None:
        self._requests = defaultdict(deque, {
            k: v for k, v in self._requests.items() if v and v[-1] > cutoff
        })


class AdmissionController:
    """
    アドミッション制御

    2つの独立したリミッターを保持する。enabled=False の場合は常に許可。
    """

    def __init__(
        self,
        request_limiter: SlidingWindowRateLimiter,
        message_limiter: SlidingWindowRateLimiter,
        enabled: bool = True,
    ):
        self.request_limiter = request_limiter
        self.message_limiter = message_limiter
        self.enabled = enabled

    @classmethod
    def from_settings(cls, settings, clock: Callable[[], float] = time.monotonic) -> "AdmissionController":
        """RateLimitSettings から生成"""
        return cls(
            request_limiter=SlidingWindowRateLimiter(
                settings.api_requests, settings.api_window, clock=clock
            ),
            message_limiter=SlidingWindowRateLimiter(
                settings.message_requests, settings.message_window, clock=clock
            ),
            enabled=settings.enabled,
        )

    def check_request(self, key: str) -> RateLimitDecision | None:
        """一般リクエストを判定（無効時は None）"""
        if not self.enabled:
            return None
        decision = self.request_limiter.check(key)
        if not decision.allowed:
            log_business_event(
                logger, "request_rate_limited", key=key, retry_after=decision.retry_after
            )
        return decision

    def admit_request(self, key: str) -> None:
        """
        一般リクエストを受け入れる

        Raises:
            RateLimited: 制限超過時
        """
        decision = self.check_request(key)
        if decision is not None and not decision.allowed:
            raise RateLimited(
                "Too many requests, please try again later.",
                retry_after=decision.retry_after,
                limit=decision.limit,
            )

    def admit_message(self, user_id: str) -> None:
        """
        メッセージ送信を受け入れる

        Raises:
            RateLimited: 制限超過時
        """
        if not self.enabled:
            return
        decision = self.message_limiter.check(f"user:{user_id}")
        if not decision.allowed:
            log_business_event(
                logger, "message_rate_limited", user_id=user_id, retry_after=decision.retry_after
            )
            raise RateLimited(
                "Too many messages, please slow down.",
                retry_after=decision.retry_after,
                limit=decision.limit,
            )
