from enum import Enum

from common.enum.error_code import APIError


class RecoveryAction(str, Enum):
    """호출자가 에러 이후 선택할 수 있는 다음 행동"""
    RETRY_STEP = "retry_step"
    RESEND_OTP = "resend_otp"
    RESTART = "restart"
    RECHECK_STATUS = "recheck_status"
    NONE = "none"


class OtpFailureReason(str, Enum):
    INVALID_OR_EXPIRED_CODE = "invalid_or_expired_code"
    SESSION_NOT_FOUND = "session_not_found"
    TRANSIENT_ERROR = "transient_error"


class AbortReason(str, Enum):
    MISSING_ARTIFACT = "missing_artifact"
    ARTIFACT_UPLOAD_FAILED = "artifact_upload_failed"
    CONTRACT_SIGN_FAILED = "contract_sign_failed"
    CANCELLED = "cancelled"


class BusinessError(Exception):
    def __init__(self, error_enum: APIError, message=None, action=RecoveryAction.NONE, data=None):
        self.error_enum = error_enum
        self.message = message if message else error_enum.message
        self.action = action
        self.data = data
        super().__init__(self.message)


# ========================================
# 로컬 검증 에러 (네트워크 호출 없음, 상태 변경 없음)
# ========================================

class SigningValidationError(BusinessError):
    def __init__(self, error_enum: APIError = APIError.INVALID_INPUT_VALUE, message=None, data=None):
        super().__init__(error_enum, message, RecoveryAction.RETRY_STEP, data)


class OtpFormatError(SigningValidationError):
    def __init__(self, message=None):
        super().__init__(APIError.OTP_INVALID_FORMAT, message)


class ResendTooEarlyError(SigningValidationError):
    def __init__(self, retry_after_seconds: int):
        self.retry_after_seconds = retry_after_seconds
        super().__init__(
            APIError.OTP_RESEND_TOO_EARLY,
            data={'retry_after_seconds': retry_after_seconds}
        )


# ========================================
# 커밋 이전 원격 에러 (재시도/중단 모두 안전)
# ========================================

class OtpIssueError(BusinessError):
    def __init__(self, message=None):
        super().__init__(APIError.OTP_ISSUE_FAILED, message, RecoveryAction.RETRY_STEP)


_OTP_REASON_ERRORS = {
    OtpFailureReason.INVALID_OR_EXPIRED_CODE: (APIError.OTP_INVALID_OR_EXPIRED, RecoveryAction.RETRY_STEP),
    OtpFailureReason.SESSION_NOT_FOUND: (APIError.OTP_SESSION_NOT_FOUND, RecoveryAction.RESEND_OTP),
    OtpFailureReason.TRANSIENT_ERROR: (APIError.OTP_TRANSIENT_ERROR, RecoveryAction.RETRY_STEP),
}


class OtpVerificationError(BusinessError):
    def __init__(self, reason: OtpFailureReason, message=None, action=None):
        self.reason = reason
        error_enum, default_action = _OTP_REASON_ERRORS[reason]
        super().__init__(error_enum, message, action or default_action, {'reason': reason.value})


class ArtifactUploadError(BusinessError):
    def __init__(self, message=None, error_enum=APIError.SIGNING_ARTIFACT_UPLOAD_FAILED):
        super().__init__(error_enum, message, RecoveryAction.RESTART)


class InvalidSignatureError(ArtifactUploadError):
    def __init__(self, message=None):
        super().__init__(message, APIError.SIGNATURE_INVALID)


class ContractSignError(BusinessError):
    def __init__(self, message=None, status_code=None):
        self.status_code = status_code
        super().__init__(APIError.SIGNING_CONTRACT_SIGN_FAILED, message, RecoveryAction.RESTART)


class ExternalServiceError(BusinessError):
    def __init__(self, message=None):
        super().__init__(APIError.EXTERNAL_SERVICE_ERROR, message, RecoveryAction.RETRY_STEP)


# ========================================
# 결과가 불확실한 에러 (커밋 여부 재확인 필요)
# ========================================

class CommitOutcomeUnknownError(BusinessError):
    def __init__(self, message=None):
        super().__init__(APIError.SIGNING_COMMIT_UNKNOWN, message, RecoveryAction.RECHECK_STATUS)


# ========================================
# 사가 제어 에러
# ========================================

_ABORT_ERRORS = {
    AbortReason.MISSING_ARTIFACT: APIError.SIGNING_MISSING_ARTIFACT,
    AbortReason.ARTIFACT_UPLOAD_FAILED: APIError.SIGNING_ARTIFACT_UPLOAD_FAILED,
    AbortReason.CONTRACT_SIGN_FAILED: APIError.SIGNING_CONTRACT_SIGN_FAILED,
    AbortReason.CANCELLED: APIError.SIGNING_CANCELLED,
}


class SigningAbortedError(BusinessError):
    """커밋 이전에 사가가 중단됨 - 계약은 서명되지 않은 상태로 남는다"""

    def __init__(self, reason: AbortReason, message=None):
        self.reason = reason
        super().__init__(
            _ABORT_ERRORS[reason],
            message,
            RecoveryAction.RESTART,
            {'reason': reason.value, 'committed': False}
        )


class SigningBusyError(BusinessError):
    def __init__(self):
        super().__init__(APIError.SIGNING_IN_PROGRESS)


class InvalidSigningStateError(BusinessError):
    def __init__(self, state, operation: str):
        state_value = getattr(state, 'value', state)
        super().__init__(
            APIError.SIGNING_INVALID_STATE,
            f"'{operation}' 요청은 현재 상태({state_value})에서 수행할 수 없습니다.",
            data={'state': state_value, 'operation': operation}
        )


class CancelNotAllowedError(BusinessError):
    def __init__(self, state):
        super().__init__(
            APIError.SIGNING_CANCEL_NOT_ALLOWED,
            data={'state': getattr(state, 'value', state)}
        )
