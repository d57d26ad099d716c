import hashlib
import hmac
import json
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import redis
import requests

from app.models.signing_session import OtpChallenge
from common.exception.exceptions import OtpIssueError, OtpVerificationError, OtpFailureReason
from common.utils.email_utils import generate_verification_code
from common.utils.logging_utils import get_logger

logger = get_logger('otp_client')


@dataclass
class OtpIssueResult:
    otp_session_id: str
    expires_at: Optional[datetime] = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OtpChallengeClient:
    """
    외부 OTP 서비스 HTTP 클라이언트

    issue(): 서명자에게 OTP 발송을 요청 (메일/SMS 전달 여부는 확인하지 않음)
    verify(): OTP 검증, 실패 시 OtpVerificationError
    """

    ISSUE_PATH = '/api/Otp/issue'
    VERIFY_PATH = '/api/Otp/verify'

    def __init__(self, base_url: str, session: requests.Session = None, timeout: float = 10):
        self.base_url = base_url.rstrip('/')
        self.session = session or requests.Session()
        self.timeout = timeout

    def issue(self, contract_id: str, email: str) -> OtpIssueResult:
        try:
            response = self.session.post(
                f"{self.base_url}{self.ISSUE_PATH}",
                json={'contractId': contract_id, 'email': email},
                timeout=self.timeout
            )
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            logger.error(f"OTP 발급 요청 실패 - contract: {contract_id}, error: {e}")
            raise OtpIssueError() from e

        otp_session_id = data.get('otpSessionId') or data.get('otpId')
        if not otp_session_id:
            logger.error(f"OTP 발급 응답에 세션 ID가 없습니다: {data}")
            raise OtpIssueError()

        expires_at = data.get('expiresAt')
        return OtpIssueResult(
            otp_session_id=otp_session_id,
            expires_at=datetime.fromisoformat(expires_at) if expires_at else None
        )

    def verify(self, otp_session_id: str, code: str) -> None:
        try:
            response = self.session.post(
                f"{self.base_url}{self.VERIFY_PATH}",
                json={'otpSessionId': otp_session_id, 'code': code},
                timeout=self.timeout
            )
        except requests.RequestException as e:
            logger.warning(f"OTP 검증 요청 실패 (일시적 오류): {e}")
            raise OtpVerificationError(OtpFailureReason.TRANSIENT_ERROR) from e

        if response.status_code == 404:
            raise OtpVerificationError(OtpFailureReason.SESSION_NOT_FOUND)
        if response.status_code in (400, 410, 422):
            raise OtpVerificationError(OtpFailureReason.INVALID_OR_EXPIRED_CODE)
        if response.status_code >= 400:
            raise OtpVerificationError(OtpFailureReason.TRANSIENT_ERROR)

        try:
            data = response.json()
        except ValueError:
            data = {}

        #NOTE: 일부 OTP 서버는 200 + {"success": false}로 실패를 반환함
        if data.get('success') is False:
            raise OtpVerificationError(OtpFailureReason.INVALID_OR_EXPIRED_CODE, data.get('message'))


class RedisOtpChallengeService:
    """
    OTP_SERVICE_URL이 없을 때 사용하는 내장 OTP 발급기

    - 계약당 활성 챌린지는 1개 (새로 발급하면 이전 챌린지는 삭제)
    - 코드는 해시로만 저장
    - 검증 성공 시 키 삭제로 소비 처리 (at-most-once)
    """

    KEY_PREFIX = 'ezstay:otp'

    def __init__(
        self,
        redis_client,
        sender: Optional[Callable[[str, str, str], bool]] = None,
        ttl_seconds: int = 300,
        code_length: int = 6,
        clock: Callable[[], datetime] = _utcnow
    ):
        self.redis_client = redis_client
        self.sender = sender
        self.ttl_seconds = ttl_seconds
        self.code_length = code_length
        self.clock = clock

    def _challenge_key(self, otp_session_id: str) -> str:
        return f"{self.KEY_PREFIX}:challenge:{otp_session_id}"

    def _active_key(self, contract_id: str) -> str:
        return f"{self.KEY_PREFIX}:contract:{contract_id}:active"

    @staticmethod
    def _hash_code(otp_session_id: str, code: str) -> str:
        return hashlib.sha256(f"{otp_session_id}:{code}".encode()).hexdigest()

    def issue(self, contract_id: str, email: str) -> OtpIssueResult:
        if self.redis_client is None:
            raise OtpIssueError("Redis 연결이 필요한 기능입니다. Redis 서버를 확인해주세요.")

        otp_session_id = str(uuid.uuid4())
        code = generate_verification_code(self.code_length)
        expires_at = self.clock() + timedelta(seconds=self.ttl_seconds)

        challenge = OtpChallenge(
            id=otp_session_id,
            contract_id=contract_id,
            email=email,
            code_hash=self._hash_code(otp_session_id, code),
            expires_at=expires_at
        )

        try:
            previous_id = self.redis_client.get(self._active_key(contract_id))
            if previous_id:
                #NOTE: 이전 챌린지 무효화 (재발송/다른 탭에서 시작한 경우)
                self.redis_client.delete(self._challenge_key(previous_id))

            self.redis_client.setex(
                self._challenge_key(otp_session_id),
                self.ttl_seconds,
                json.dumps(challenge.to_dict())
            )
            self.redis_client.setex(self._active_key(contract_id), self.ttl_seconds, otp_session_id)
        except redis.RedisError as e:
            logger.error(f"OTP 챌린지 저장 실패: {e}")
            raise OtpIssueError() from e

        if self.sender is not None:
            delivered = self.sender(email, code, contract_id)
            if not delivered:
                logger.warning(f"OTP 메일 발송 실패 - contract: {contract_id}, email: {email}")

        logger.info(f"OTP 발급 완료 - contract: {contract_id}, session: {otp_session_id}")
        return OtpIssueResult(otp_session_id=otp_session_id, expires_at=expires_at)

    def verify(self, otp_session_id: str, code: str) -> None:
        if self.redis_client is None:
            raise OtpVerificationError(OtpFailureReason.TRANSIENT_ERROR)

        key = self._challenge_key(otp_session_id)
        try:
            raw = self.redis_client.get(key)
        except redis.RedisError as e:
            raise OtpVerificationError(OtpFailureReason.TRANSIENT_ERROR) from e

        #NOTE: 소비/만료/교체된 챌린지는 모두 키가 없으므로 동일하게 처리
        if raw is None:
            raise OtpVerificationError(OtpFailureReason.INVALID_OR_EXPIRED_CODE)

        challenge = OtpChallenge.from_dict(json.loads(raw))
        if challenge.consumed or challenge.is_expired(self.clock()):
            raise OtpVerificationError(OtpFailureReason.INVALID_OR_EXPIRED_CODE)

        if not hmac.compare_digest(challenge.code_hash, self._hash_code(otp_session_id, code)):
            raise OtpVerificationError(OtpFailureReason.INVALID_OR_EXPIRED_CODE)

        try:
            removed = self.redis_client.delete(key)
        except redis.RedisError as e:
            raise OtpVerificationError(OtpFailureReason.TRANSIENT_ERROR) from e

        # 동시에 들어온 다른 검증 요청이 먼저 소비한 경우
        if not removed:
            raise OtpVerificationError(OtpFailureReason.INVALID_OR_EXPIRED_CODE)

        logger.info(f"OTP 검증 완료 - contract: {challenge.contract_id}, session: {otp_session_id}")
