from marshmallow import Schema, fields, validate

from app.models.signing_session import SignatureKind


class SavePendingSignatureRequestSchema(Schema):
    kind = fields.String(
        required=True,
        validate=validate.OneOf([kind.value for kind in SignatureKind]),
        metadata={'description': '서명 방식 (drawn / uploadedFile / typed)'}
    )
    payload = fields.String(
        required=True,
        validate=validate.Length(min=1),
        metadata={'description': 'drawn/uploadedFile: data URL, typed: 서명 텍스트'}
    )
    file_name = fields.String(load_default=None, metadata={'description': '업로드 파일명'})
    signer_name = fields.String(load_default=None, metadata={'description': '서명자 이름'})
    signer_email = fields.Email(load_default=None, metadata={'description': 'OTP 받을 이메일'})
    signer_phone = fields.String(load_default=None, metadata={'description': '서명자 전화번호'})


class PendingSignatureResponseSchema(Schema):
    contract_id = fields.String(metadata={'description': '계약 ID'})
    kind = fields.String(metadata={'description': '서명 방식'})
    signer_name = fields.String(allow_none=True, metadata={'description': '서명자 이름'})
    signer_email = fields.String(allow_none=True, metadata={'description': '서명자 이메일'})


class StartSigningRequestSchema(Schema):
    signer_name = fields.String(load_default=None, metadata={'description': '서명자 이름 (미입력 시 계약 정보 사용)'})
    signer_email = fields.Email(load_default=None, metadata={'description': 'OTP 받을 이메일 (미입력 시 계약 정보 사용)'})
    signer_phone = fields.String(load_default=None, metadata={'description': '서명자 전화번호'})


class VerifyOtpRequestSchema(Schema):
    code = fields.String(required=True, metadata={'description': 'OTP 코드 (숫자 6자리)'})


class SigningStatusResponseSchema(Schema):
    contract_id = fields.String(metadata={'description': '계약 ID'})
    transaction_id = fields.String(metadata={'description': '서명 시도 ID'})
    state = fields.String(metadata={'description': '서명 사가 상태'})
    signer_name = fields.String(allow_none=True, metadata={'description': '서명자 이름'})
    masked_phone = fields.String(metadata={'description': '마스킹된 전화번호'})
    remaining_seconds = fields.Integer(metadata={'description': 'OTP 만료까지 남은 시간 (초)'})
    resend_available_in = fields.Integer(metadata={'description': '재발송 가능까지 남은 시간 (초)'})
    signature_url = fields.String(allow_none=True, metadata={'description': '업로드된 서명 이미지 URL'})
    pdf_url = fields.String(allow_none=True, metadata={'description': '서명 계약서 PDF URL'})
    abort_reason = fields.String(allow_none=True, metadata={'description': '중단 사유'})
    cancel_requested = fields.Boolean(metadata={'description': '취소 예약 여부'})
    warnings = fields.List(fields.String(), metadata={'description': '경고 메시지'})


class SigningOutcomeResponseSchema(Schema):
    contract_id = fields.String(metadata={'description': '계약 ID'})
    state = fields.String(metadata={'description': '서명 사가 상태'})
    committed = fields.Boolean(metadata={'description': '계약 서명 반영 여부'})
    signature_url = fields.String(allow_none=True, metadata={'description': '서명 이미지 URL'})
    pdf_url = fields.String(allow_none=True, metadata={'description': '서명 계약서 PDF URL'})
    pdf_attached = fields.Boolean(metadata={'description': 'PDF 첨부 여부'})
    warnings = fields.List(fields.String(), metadata={'description': '경고 메시지 (PDF 실패 등)'})


class CancelSigningResponseSchema(Schema):
    contract_id = fields.String(metadata={'description': '계약 ID'})
    state = fields.String(metadata={'description': '서명 사가 상태'})
    cancelled = fields.Boolean(metadata={'description': '즉시 취소 여부 (false면 진행 중 단계 이후 반영)'})
