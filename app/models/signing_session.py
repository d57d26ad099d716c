import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class SigningState(str, Enum):
    IDLE = "idle"
    OTP_PENDING = "otp_pending"
    OTP_VERIFIED = "otp_verified"
    ARTIFACT_UPLOADED = "artifact_uploaded"
    COMMIT_UNKNOWN = "commit_unknown"  # sign 호출 결과 불명 - 상태 재확인 필요
    COMMITTED = "committed"  # 커밋 지점 통과 (법적 효력 발생)
    PDF_ATTACHED = "pdf_attached"
    PDF_SKIPPED = "pdf_skipped"
    DONE = "done"
    ABORTED = "aborted"


TERMINAL_STATES = frozenset({SigningState.DONE, SigningState.ABORTED})

CANCELLABLE_STATES = frozenset({
    SigningState.IDLE,
    SigningState.OTP_PENDING,
    SigningState.OTP_VERIFIED,
    SigningState.ARTIFACT_UPLOADED,
})


class SignatureKind(str, Enum):
    DRAWN = "drawn"
    UPLOADED_FILE = "uploadedFile"
    TYPED = "typed"


def _parse_datetime(value) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def _format_datetime(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class SignatureArtifact:
    # drawn / uploadedFile: data URL (data:image/png;base64,...), typed: 서명 텍스트
    kind: SignatureKind
    payload: str
    file_name: Optional[str] = None

    def to_dict(self) -> Dict:
        return {
            'kind': self.kind.value,
            'payload': self.payload,
            'file_name': self.file_name
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'SignatureArtifact':
        return cls(
            kind=SignatureKind(data['kind']),
            payload=data['payload'],
            file_name=data.get('file_name')
        )


@dataclass
class SigningSession:
    contract_id: str

    signer_name: Optional[str] = None
    signer_email: Optional[str] = None
    signer_phone: Optional[str] = None

    # OTP 세션 - 재발송 시마다 교체됨
    otp_session_id: Optional[str] = None
    otp_issued_at: Optional[datetime] = None
    otp_expires_at: Optional[datetime] = None
    resend_available_at: Optional[datetime] = None

    signature_artifact: Optional[SignatureArtifact] = None
    state: SigningState = SigningState.IDLE

    signature_url: Optional[str] = None
    pdf_url: Optional[str] = None
    abort_reason: Optional[str] = None
    warnings: List[str] = field(default_factory=list)

    transaction_id: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __setattr__(self, name, value):
        if name == 'contract_id' and 'contract_id' in self.__dict__:
            raise AttributeError("contract_id는 변경할 수 없습니다.")
        super().__setattr__(name, value)

    @property
    def masked_phone(self) -> str:
        if not self.signer_phone:
            return '****'
        return f"******{self.signer_phone[-4:]}"

    def remaining_seconds(self, now: datetime) -> int:
        if self.otp_expires_at is None:
            return 0
        remaining = (self.otp_expires_at - now).total_seconds()
        return max(0, math.ceil(remaining))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'contract_id': self.contract_id,
            'signer_name': self.signer_name,
            'signer_email': self.signer_email,
            'signer_phone': self.signer_phone,
            'otp_session_id': self.otp_session_id,
            'otp_issued_at': _format_datetime(self.otp_issued_at),
            'otp_expires_at': _format_datetime(self.otp_expires_at),
            'resend_available_at': _format_datetime(self.resend_available_at),
            'signature_artifact': self.signature_artifact.to_dict() if self.signature_artifact else None,
            'state': self.state.value,
            'signature_url': self.signature_url,
            'pdf_url': self.pdf_url,
            'abort_reason': self.abort_reason,
            'warnings': list(self.warnings),
            'transaction_id': self.transaction_id,
            'created_at': _format_datetime(self.created_at)
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'SigningSession':
        artifact = data.get('signature_artifact')
        return cls(
            contract_id=data['contract_id'],
            signer_name=data.get('signer_name'),
            signer_email=data.get('signer_email'),
            signer_phone=data.get('signer_phone'),
            otp_session_id=data.get('otp_session_id'),
            otp_issued_at=_parse_datetime(data.get('otp_issued_at')),
            otp_expires_at=_parse_datetime(data.get('otp_expires_at')),
            resend_available_at=_parse_datetime(data.get('resend_available_at')),
            signature_artifact=SignatureArtifact.from_dict(artifact) if artifact else None,
            state=SigningState(data.get('state', 'idle')),
            signature_url=data.get('signature_url'),
            pdf_url=data.get('pdf_url'),
            abort_reason=data.get('abort_reason'),
            warnings=list(data.get('warnings', [])),
            transaction_id=data.get('transaction_id'),
            created_at=_parse_datetime(data.get('created_at')) or datetime.now(timezone.utc)
        )


@dataclass
class OtpChallenge:
    id: str
    contract_id: str
    email: str
    # 코드 원문은 저장하지 않음 (write-only)
    code_hash: str
    expires_at: datetime
    consumed: bool = False

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def to_dict(self) -> Dict:
        return {
            'id': self.id,
            'contract_id': self.contract_id,
            'email': self.email,
            'code_hash': self.code_hash,
            'expires_at': _format_datetime(self.expires_at),
            'consumed': self.consumed
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'OtpChallenge':
        return cls(
            id=data['id'],
            contract_id=data['contract_id'],
            email=data['email'],
            code_hash=data['code_hash'],
            expires_at=_parse_datetime(data['expires_at']),
            consumed=data.get('consumed', False)
        )


@dataclass
class SigningOutcome:
    """사가 종료 결과 - 커밋 이후 실패는 warnings로만 전달된다"""
    committed: bool
    state: SigningState
    signature_url: Optional[str] = None
    pdf_url: Optional[str] = None
    pdf_attached: bool = False
    warnings: List[str] = field(default_factory=list)
