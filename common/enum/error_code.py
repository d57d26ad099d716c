from enum import Enum

class APIError(Enum):
    # 1. 공통 에러
    INTERNAL_SERVER_ERROR = ("C001", "서버 내부 오류가 발생했습니다.", 500)
    INVALID_INPUT_VALUE  = ("C002", "입력값이 올바르지 않습니다.", 400)
    EXTERNAL_SERVICE_ERROR = ("C003", "외부 서비스 호출 중 오류가 발생했습니다.", 502)

    # 2. 인증(Auth) 관련
    AUTH_TOKEN_EXPIRED   = ("A001", "토큰이 만료되었습니다.", 401)
    AUTH_INVALID_TOKEN   = ("A002", "유효하지 않은 토큰입니다.", 401)

    # 3. 계약(Contract) 관련
    CONTRACT_NOT_FOUND   = ("K001", "계약을 찾을 수 없습니다.", 404)
    CONTRACT_ALREADY_SIGNED = ("K002", "이미 서명이 완료된 계약입니다.", 409)

    # 4. OTP 관련
    OTP_INVALID_FORMAT   = ("O001", "OTP 코드는 숫자 6자리여야 합니다.", 400)
    OTP_INVALID_OR_EXPIRED = ("O002", "OTP 코드가 올바르지 않거나 만료되었습니다.", 400)
    OTP_SESSION_NOT_FOUND = ("O003", "진행 중인 OTP 세션이 없습니다. OTP를 다시 요청해주세요.", 404)
    OTP_TRANSIENT_ERROR  = ("O004", "OTP 확인 중 일시적인 오류가 발생했습니다. 다시 시도해주세요.", 503)
    OTP_ISSUE_FAILED     = ("O005", "OTP 발송에 실패했습니다. 다시 시도해주세요.", 502)
    OTP_RESEND_TOO_EARLY = ("O006", "OTP 재발송은 발급 후 60초가 지나야 가능합니다.", 429)

    # 5. 서명(Signing) 관련
    SIGNING_SESSION_NOT_FOUND = ("S001", "진행 중인 서명 세션을 찾을 수 없습니다.", 404)
    SIGNING_IN_PROGRESS  = ("S002", "이전 요청을 처리 중입니다.", 409)
    SIGNING_INVALID_STATE = ("S003", "현재 서명 단계에서 수행할 수 없는 요청입니다.", 409)
    SIGNING_MISSING_ARTIFACT = ("S004", "서명 이미지가 없습니다. 서명을 다시 작성해주세요.", 422)
    SIGNING_ARTIFACT_UPLOAD_FAILED = ("S005", "서명 이미지 업로드에 실패했습니다.", 502)
    SIGNING_CONTRACT_SIGN_FAILED = ("S006", "계약 서명 처리에 실패했습니다.", 502)
    SIGNING_COMMIT_UNKNOWN = ("S007", "계약 서명 결과를 확인할 수 없습니다. 계약 상태를 다시 확인해주세요.", 504)
    SIGNING_CANCEL_NOT_ALLOWED = ("S008", "이미 서명된 계약은 취소할 수 없습니다.", 409)
    SIGNING_CANCELLED    = ("S009", "서명이 취소되었습니다.", 409)
    SIGNATURE_INVALID    = ("S010", "서명 데이터가 올바르지 않습니다.", 400)

    def __init__(self, code, message, status):
        self.code = code
        self.message = message
        self.status = status
