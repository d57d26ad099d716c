from dataclasses import dataclass, field
from typing import List, Optional


@dataclass
class PendingSignatureDto:
    contract_id: str
    kind: str
    signer_name: Optional[str]
    signer_email: Optional[str]

    def to_dict(self):
        return {
            'contract_id': self.contract_id,
            'kind': self.kind,
            'signer_name': self.signer_name,
            'signer_email': self.signer_email
        }


@dataclass
class SigningStatusDto:
    contract_id: str
    transaction_id: str
    state: str
    signer_name: Optional[str]
    masked_phone: str
    remaining_seconds: int  # OTP 만료까지 남은 시간
    resend_available_in: int  # 재발송 가능까지 남은 시간
    signature_url: Optional[str] = None
    pdf_url: Optional[str] = None
    abort_reason: Optional[str] = None
    cancel_requested: bool = False
    warnings: List[str] = field(default_factory=list)

    @classmethod
    def from_orchestrator(cls, orchestrator) -> 'SigningStatusDto':
        session = orchestrator.session
        return cls(
            contract_id=session.contract_id,
            transaction_id=session.transaction_id,
            state=session.state.value,
            signer_name=session.signer_name,
            masked_phone=session.masked_phone,
            remaining_seconds=orchestrator.remaining_seconds(),
            resend_available_in=orchestrator.resend_available_in(),
            signature_url=session.signature_url,
            pdf_url=session.pdf_url,
            abort_reason=session.abort_reason,
            cancel_requested=orchestrator.cancel_requested,
            warnings=list(session.warnings)
        )

    def to_dict(self):
        return {
            'contract_id': self.contract_id,
            'transaction_id': self.transaction_id,
            'state': self.state,
            'signer_name': self.signer_name,
            'masked_phone': self.masked_phone,
            'remaining_seconds': self.remaining_seconds,
            'resend_available_in': self.resend_available_in,
            'signature_url': self.signature_url,
            'pdf_url': self.pdf_url,
            'abort_reason': self.abort_reason,
            'cancel_requested': self.cancel_requested,
            'warnings': self.warnings
        }


@dataclass
class SigningOutcomeDto:
    contract_id: str
    state: str
    committed: bool
    signature_url: Optional[str]
    pdf_url: Optional[str]
    pdf_attached: bool
    warnings: List[str]

    @classmethod
    def from_outcome(cls, contract_id: str, outcome) -> 'SigningOutcomeDto':
        return cls(
            contract_id=contract_id,
            state=outcome.state.value,
            committed=outcome.committed,
            signature_url=outcome.signature_url,
            pdf_url=outcome.pdf_url,
            pdf_attached=outcome.pdf_attached,
            warnings=list(outcome.warnings)
        )

    def to_dict(self):
        return {
            'contract_id': self.contract_id,
            'state': self.state,
            'committed': self.committed,
            'signature_url': self.signature_url,
            'pdf_url': self.pdf_url,
            'pdf_attached': self.pdf_attached,
            'warnings': self.warnings
        }


@dataclass
class CancelResultDto:
    contract_id: str
    state: str
    # False면 진행 중 단계가 끝난 뒤 취소가 반영됨
    cancelled: bool

    def to_dict(self):
        return {
            'contract_id': self.contract_id,
            'state': self.state,
            'cancelled': self.cancelled
        }
