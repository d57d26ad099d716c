"""
사가 패턴 (Saga Pattern) 모듈

계약 서명처럼 여러 서비스에 걸친 작업을 단일 커밋 지점 + 후속 best-effort 단계로 처리
"""

from .countdown import OtpCountdown, SchedulerTicker
from .signing_orchestrator import SigningSagaOrchestrator
from .registry import SigningSessionRegistry

__all__ = [
    'OtpCountdown',
    'SchedulerTicker',
    'SigningSagaOrchestrator',
    'SigningSessionRegistry'
]
