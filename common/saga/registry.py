from datetime import datetime, timedelta
from threading import Lock
from typing import Callable, Dict, Optional, Tuple

from common.utils.logging_utils import get_logger

logger = get_logger('signing_registry')


class SigningSessionRegistry:
    """
    진행 중인 서명 시도 보관소 (클라이언트 스코프 + 계약 단위로 1개)

    같은 스코프에서 다시 시작하면 진행 중인 시도를 재사용하고,
    종료된 시도만 새 시도로 교체한다.
    """

    _instance = None
    _lock = Lock()

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._attempts = {}
        return cls._instance

    def get(self, scope: str, contract_id: str):
        with self._lock:
            return self._attempts.get((scope, contract_id))

    def get_or_create(self, scope: str, contract_id: str, factory: Callable[[], object]):
        key: Tuple[str, str] = (scope, contract_id)
        with self._lock:
            current = self._attempts.get(key)
            if current is not None and not current.is_terminal:
                return current

            if current is not None:
                current.dispose()

            attempt = factory()
            self._attempts[key] = attempt

            others = [k for k, v in self._attempts.items() if k[1] == contract_id and k != key and not v.is_terminal]
            if others:
                #NOTE: 다른 탭의 시도는 유지, OTP는 새 발급이 이전 것을 대체함
                logger.info(f"같은 계약에 다른 클라이언트의 서명 시도가 있습니다 - contract: {contract_id}, count: {len(others)}")
            return attempt

    def remove(self, scope: str, contract_id: str, attempt=None) -> Optional[object]:
        """시도 제거. attempt를 주면 그 시도가 아직 등록돼 있을 때만 제거한다"""
        key = (scope, contract_id)
        with self._lock:
            current = self._attempts.get(key)
            if current is None or (attempt is not None and current is not attempt):
                return None
            del self._attempts[key]
        current.dispose()
        return current

    def sweep(self, now: datetime, idle_timeout: timedelta) -> int:
        """종료됐거나 오래 방치된 시도를 정리하고 정리한 개수를 반환"""
        with self._lock:
            stale = [key for key, attempt in self._attempts.items() if attempt.is_stale(now, idle_timeout)]
            removed = [self._attempts.pop(key) for key in stale]
        for attempt in removed:
            attempt.dispose()
        return len(removed)

    def clear_all(self):
        with self._lock:
            attempts: Dict = dict(self._attempts)
            self._attempts.clear()
        for attempt in attempts.values():
            attempt.dispose()

    def get_size(self) -> int:
        with self._lock:
            return len(self._attempts)
