"""
Models package
서명 사가 도메인 모델 및 MongoDB 감사 로그

Domain Models:
- SigningSession: 진행 중인 서명 시도 1건
- SignatureArtifact: 손글씨/업로드/입력 서명 데이터
- OtpChallenge: OTP 인증 챌린지
- SigningOutcome: 사가 종료 결과

MongoDB Collections:
- SigningSagaLog: 서명 사가 감사 로그
"""

from app.models.signing_session import (
    SigningState,
    SignatureKind,
    SignatureArtifact,
    SigningSession,
    OtpChallenge,
    SigningOutcome,
    TERMINAL_STATES,
    CANCELLABLE_STATES
)

__all__ = [
    'SigningState',
    'SignatureKind',
    'SignatureArtifact',
    'SigningSession',
    'OtpChallenge',
    'SigningOutcome',
    'TERMINAL_STATES',
    'CANCELLABLE_STATES'
]
