"""
서명 세션 저장소

이전 화면(서명 작성)에서 서명 화면으로 넘기는 pending signature를 담는 단일 슬롯 채널.
생산자는 put()으로 한 번 쓰고, 소비자는 take()로 한 번 읽으면서 비운다.
클라이언트 세션 + 계약 단위로 스코프가 나뉜다.
"""

import json
from abc import ABC, abstractmethod
from threading import Lock
from typing import Dict, Optional

from app.models.signing_session import SigningSession
from common.utils.logging_utils import get_logger

logger = get_logger('signing_session_store')

KEY_PREFIX = 'ezstay:signing:pending'


def build_scope_key(scope: str, contract_id: str) -> str:
    return f"{KEY_PREFIX}:{scope}:{contract_id}"


class SigningSessionStore(ABC):

    def __init__(self, key: str):
        self.key = key

    @abstractmethod
    def put(self, session: SigningSession) -> None:
        pass

    @abstractmethod
    def get(self) -> Optional[SigningSession]:
        pass

    @abstractmethod
    def take(self) -> Optional[SigningSession]:
        pass

    @abstractmethod
    def clear(self) -> bool:
        pass


class RedisSigningSessionStore(SigningSessionStore):

    def __init__(self, redis_client, key: str, ttl_seconds: int = 1800):
        super().__init__(key)
        self.redis_client = redis_client
        self.ttl_seconds = ttl_seconds

    def put(self, session: SigningSession) -> None:
        self.redis_client.setex(self.key, self.ttl_seconds, json.dumps(session.to_dict()))

    def get(self) -> Optional[SigningSession]:
        raw = self.redis_client.get(self.key)
        return SigningSession.from_dict(json.loads(raw)) if raw else None

    def take(self) -> Optional[SigningSession]:
        #NOTE: GETDEL로 읽기와 삭제를 원자적으로 처리 (Redis 6.2+)
        raw = self.redis_client.getdel(self.key)
        return SigningSession.from_dict(json.loads(raw)) if raw else None

    def clear(self) -> bool:
        return bool(self.redis_client.delete(self.key))


class InMemorySigningSessionStore(SigningSessionStore):
    """Redis를 사용할 수 없을 때의 프로세스 내 저장소 (단일 워커 전용)"""

    _slots: Dict[str, Dict] = {}
    _lock = Lock()

    def put(self, session: SigningSession) -> None:
        with self._lock:
            self._slots[self.key] = session.to_dict()

    def get(self) -> Optional[SigningSession]:
        with self._lock:
            data = self._slots.get(self.key)
        return SigningSession.from_dict(data) if data else None

    def take(self) -> Optional[SigningSession]:
        with self._lock:
            data = self._slots.pop(self.key, None)
        return SigningSession.from_dict(data) if data else None

    def clear(self) -> bool:
        with self._lock:
            return self._slots.pop(self.key, None) is not None

    @classmethod
    def clear_all(cls):
        with cls._lock:
            cls._slots.clear()


def create_session_store(scope: str, contract_id: str, ttl_seconds: int = 1800) -> SigningSessionStore:
    import common.extensions as extensions

    key = build_scope_key(scope, contract_id)
    if extensions.redis_client is not None:
        return RedisSigningSessionStore(extensions.redis_client, key, ttl_seconds)

    logger.warning("Redis 사용 불가, 서명 세션을 프로세스 메모리에 저장합니다")
    return InMemorySigningSessionStore(key)
