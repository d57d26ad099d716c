"""
MongoDB Collections Models
MongoDB 콜렉션용 헬퍼 클래스 및 데이터 모델
"""

from .saga_transaction_log import (
    SigningSagaLog,
    SigningSagaLogRepository,
    SagaStatus,
    SagaStep,
    SigningStep,
    StepStatus,
    STEP_ORDER
)

__all__ = [
    'SigningSagaLog',
    'SigningSagaLogRepository',
    'SagaStatus',
    'SagaStep',
    'SigningStep',
    'StepStatus',
    'STEP_ORDER'
]
