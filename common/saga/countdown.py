"""
OTP 카운트다운

1초 간격 반복 작업으로 남은 시간을 알린다.
남은 시간은 틱 횟수가 아니라 항상 벽시계와 만료 시각의 차이로 계산하므로
틱이 늦거나 빠져도 표시가 어긋나지 않는다.
"""

import math
from datetime import datetime, timezone
from threading import Lock
from typing import Callable, Optional

from apscheduler.jobstores.base import JobLookupError

from common.utils.logging_utils import get_logger

logger = get_logger('countdown')


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SchedulerTicker:
    """APScheduler interval job으로 1초 틱을 발생시키는 어댑터"""

    def __init__(self, scheduler, interval_seconds: int = 1):
        self.scheduler = scheduler
        self.interval_seconds = interval_seconds

    def schedule(self, job_id: str, func: Callable[[], None]) -> None:
        self.scheduler.add_job(
            id=job_id,
            func=func,
            trigger='interval',
            seconds=self.interval_seconds,
            replace_existing=True
        )

    def cancel(self, job_id: str) -> None:
        try:
            self.scheduler.remove_job(job_id)
        except JobLookupError:
            #NOTE: 이미 제거된 작업
            pass


class OtpCountdown:

    def __init__(
        self,
        job_id: str,
        ticker,
        clock: Callable[[], datetime] = utcnow,
        on_tick: Optional[Callable[[int], None]] = None,
        on_expire: Optional[Callable[[], None]] = None
    ):
        self.job_id = job_id
        self.ticker = ticker
        self.clock = clock
        self.on_tick = on_tick
        self.on_expire = on_expire

        self._lock = Lock()
        self._expires_at: Optional[datetime] = None
        self._active = False

    @property
    def active(self) -> bool:
        return self._active

    @property
    def expires_at(self) -> Optional[datetime]:
        return self._expires_at

    def remaining_seconds(self) -> int:
        if self._expires_at is None:
            return 0
        remaining = (self._expires_at - self.clock()).total_seconds()
        return max(0, math.ceil(remaining))

    def is_expired(self) -> bool:
        return self._expires_at is None or self.clock() >= self._expires_at

    def start(self, expires_at: datetime) -> None:
        """카운트다운 (재)시작 - 재발송 시 새 만료 시각으로 교체"""
        with self._lock:
            self._expires_at = expires_at
            self._active = True
        self.ticker.schedule(self.job_id, self.tick)
        logger.debug(f"카운트다운 시작: {self.job_id}, 만료: {expires_at.isoformat()}")

    def cancel(self) -> None:
        with self._lock:
            if not self._active:
                return
            self._active = False
        self.ticker.cancel(self.job_id)
        logger.debug(f"카운트다운 중지: {self.job_id}")

    def tick(self) -> None:
        # 취소 이후 늦게 도착한 틱은 무시
        with self._lock:
            if not self._active:
                return

        remaining = self.remaining_seconds()
        if self.on_tick is not None:
            self.on_tick(remaining)

        if remaining <= 0:
            self.cancel()
            if self.on_expire is not None:
                self.on_expire()
