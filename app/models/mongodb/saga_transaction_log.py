from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Any
from dataclasses import dataclass, field
from enum import Enum


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SagaStatus(str, Enum):
    IN_PROGRESS = "in_progress"  # 진행 중 (커밋 전)
    COMMITTED = "committed"  # 계약 서명 완료, 후속 단계 진행 중
    COMPLETED = "completed"  # 성공 완료 (PDF 실패 포함)
    ABORTED = "aborted"  # 커밋 전 중단
    UNCERTAIN = "uncertain"  # 서명 호출 결과 불명 - 재확인 필요


class StepStatus(str, Enum):
    PENDING = "pending"  # 실행 전
    COMPLETED = "completed"  # 성공
    FAILED = "failed"  # 실패
    SKIPPED = "skipped"  # 실행하지 않음 (중단/취소)


class SigningStep(str, Enum):
    ISSUE_OTP = "issue_otp"
    VERIFY_OTP = "verify_otp"
    UPLOAD_ARTIFACT = "upload_artifact"
    SIGN_CONTRACT = "sign_contract"
    COMPOSE_PDF = "compose_pdf"


#NOTE: 단계 순서 고정 - 인덱스로 업데이트하므로 순서를 바꾸면 안 됨
STEP_ORDER = [
    SigningStep.ISSUE_OTP,
    SigningStep.VERIFY_OTP,
    SigningStep.UPLOAD_ARTIFACT,
    SigningStep.SIGN_CONTRACT,
    SigningStep.COMPOSE_PDF
]


@dataclass
class SagaStep:
    name: str

    status: StepStatus = StepStatus.PENDING

    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    # 시도 횟수 (OTP 재발송, 서명 재시도 등)
    attempts: int = 0

    error_message: Optional[str] = None

    def to_dict(self) -> Dict:
        return {
            'name': self.name,
            'status': self.status.value,
            'started_at': self.started_at,
            'completed_at': self.completed_at,
            'attempts': self.attempts,
            'error_message': self.error_message
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'SagaStep':
        return cls(
            name=data['name'],
            status=StepStatus(data.get('status', 'pending')),
            started_at=data.get('started_at'),
            completed_at=data.get('completed_at'),
            attempts=data.get('attempts', 0),
            error_message=data.get('error_message')
        )


@dataclass
class SigningSagaLog:
    # 트랜잭션 ID (UUID) - 계약 서명 호출의 Idempotency-Key로도 사용
    transaction_id: str

    contract_id: str

    status: SagaStatus = SagaStatus.IN_PROGRESS

    steps: List[SagaStep] = field(
        default_factory=lambda: [SagaStep(name=step.value) for step in STEP_ORDER]
    )

    created_at: datetime = field(default_factory=_utcnow)

    committed_at: Optional[datetime] = None

    completed_at: Optional[datetime] = None

    # 중단 사유 (missing_artifact, artifact_upload_failed, contract_sign_failed, cancelled)
    abort_reason: Optional[str] = None

    # 커밋 이후 경고 (PDF 생성 실패 등)
    warnings: List[str] = field(default_factory=list)

    # 메타 데이터 (스코프, 서명 방식 등)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict:
        return {
            'transaction_id': self.transaction_id,
            'contract_id': self.contract_id,
            'status': self.status.value,
            'steps': [step.to_dict() for step in self.steps],
            'created_at': self.created_at,
            'committed_at': self.committed_at,
            'completed_at': self.completed_at,
            'abort_reason': self.abort_reason,
            'warnings': self.warnings,
            'metadata': self.metadata
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'SigningSagaLog':
        return cls(
            transaction_id=data['transaction_id'],
            contract_id=data['contract_id'],
            status=SagaStatus(data.get('status', 'in_progress')),
            steps=[SagaStep.from_dict(step) for step in data.get('steps', [])],
            created_at=data.get('created_at', _utcnow()),
            committed_at=data.get('committed_at'),
            completed_at=data.get('completed_at'),
            abort_reason=data.get('abort_reason'),
            warnings=data.get('warnings', []),
            metadata=data.get('metadata', {})
        )

    def get_step(self, step: SigningStep) -> SagaStep:
        return self.steps[STEP_ORDER.index(step)]


class SigningSagaLogRepository:
    COLLECTION_NAME = 'signing_saga_log'

    def __init__(self, db):
        self.collection = db[self.COLLECTION_NAME]
        # NOTE : 인덱스 생성
        self.collection.create_index('transaction_id', unique=True)
        self.collection.create_index([('contract_id', 1), ('created_at', -1)])
        self.collection.create_index([('status', 1)])

    # NOTE : 사가 로그 생성
    def insert(self, saga_log: SigningSagaLog):
        self.collection.insert_one(saga_log.to_dict())

    # NOTE : 트랜잭션 ID로 조회
    def find_by_transaction_id(self, transaction_id: str) -> Optional[SigningSagaLog]:
        doc = self.collection.find_one({'transaction_id': transaction_id})
        return SigningSagaLog.from_dict(doc) if doc else None

    # NOTE : 사가 상태 업데이트
    def update_status(self, transaction_id: str, status: SagaStatus, **extra):
        update = {'status': status.value}
        if status == SagaStatus.COMMITTED:
            update['committed_at'] = _utcnow()
        if status in (SagaStatus.COMPLETED, SagaStatus.ABORTED):
            update['completed_at'] = _utcnow()
        update.update(extra)

        self.collection.update_one(
            {'transaction_id': transaction_id},
            {'$set': update}
        )

    # NOTE : 특정 단계 업데이트
    def update_step(self, transaction_id: str, step: SigningStep, update_data: Dict):
        step_index = STEP_ORDER.index(step)
        field_updates = {
            f'steps.{step_index}.{key}': value
            for key, value in update_data.items()
        }

        self.collection.update_one(
            {'transaction_id': transaction_id},
            {'$set': field_updates}
        )

    # NOTE : 단계 시작 (시도 횟수 증가)
    def mark_step_started(self, transaction_id: str, step: SigningStep):
        step_index = STEP_ORDER.index(step)
        self.collection.update_one(
            {'transaction_id': transaction_id},
            {
                '$set': {
                    f'steps.{step_index}.status': StepStatus.PENDING.value,
                    f'steps.{step_index}.started_at': _utcnow()
                },
                '$inc': {f'steps.{step_index}.attempts': 1}
            }
        )

    # NOTE : 단계를 완료로 표시
    def mark_step_completed(self, transaction_id: str, step: SigningStep):
        self.update_step(transaction_id, step, {
            'status': StepStatus.COMPLETED.value,
            'completed_at': _utcnow(),
            'error_message': None
        })

    # NOTE : 단계를 실패로 표시
    def mark_step_failed(self, transaction_id: str, step: SigningStep, error_message: str):
        self.update_step(transaction_id, step, {
            'status': StepStatus.FAILED.value,
            'error_message': error_message,
            'completed_at': _utcnow()
        })

    # NOTE : 단계를 건너뜀으로 표시
    def mark_step_skipped(self, transaction_id: str, step: SigningStep, error_message: Optional[str] = None):
        self.update_step(transaction_id, step, {
            'status': StepStatus.SKIPPED.value,
            'error_message': error_message,
            'completed_at': _utcnow()
        })

    # NOTE : 오래된 로그 삭제 (종료된 사가만)
    def delete_old_logs(self, days: int = 90) -> int:
        cutoff_date = _utcnow() - timedelta(days=days)

        result = self.collection.delete_many({
            'created_at': {'$lt': cutoff_date},
            'status': {'$in': [SagaStatus.COMPLETED.value, SagaStatus.ABORTED.value]}
        })
        return result.deleted_count
