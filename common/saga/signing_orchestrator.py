import math
import re
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta
from threading import Lock
from typing import Callable, List, Optional

import redis
from pymongo.errors import PyMongoError

from app.models.signing_session import (
    CANCELLABLE_STATES,
    TERMINAL_STATES,
    SigningOutcome,
    SigningSession,
    SigningState
)
from app.models.mongodb.saga_transaction_log import SagaStatus, SigningSagaLog, SigningStep
from common.clients.contract_client import contract_field
from common.exception.exceptions import (
    AbortReason,
    ArtifactUploadError,
    CancelNotAllowedError,
    CommitOutcomeUnknownError,
    ContractSignError,
    InvalidSigningStateError,
    OtpFailureReason,
    OtpFormatError,
    OtpIssueError,
    OtpVerificationError,
    RecoveryAction,
    ResendTooEarlyError,
    SigningAbortedError,
    SigningBusyError,
    SigningValidationError
)
from common.saga.countdown import OtpCountdown, utcnow
from common.utils.logging_utils import get_logger

logger = get_logger('signing_orchestrator')

COMMITTED_STATES = frozenset({
    SigningState.COMMITTED,
    SigningState.PDF_ATTACHED,
    SigningState.PDF_SKIPPED,
    SigningState.DONE
})


class SigningSagaOrchestrator:
    """
    계약 서명 사가 (OTP 인증 -> 서명 이미지 업로드 -> 계약 서명 -> PDF 첨부)

    IDLE -> OTP_PENDING -> OTP_VERIFIED -> ARTIFACT_UPLOADED -> COMMITTED
         -> PDF_ATTACHED | PDF_SKIPPED -> DONE

    - 계약 서명(sign) 호출이 유일한 커밋 지점이다. 그 이전 실패는 ABORTED로 끝나고
      계약은 서명되지 않은 상태로 남는다.
    - sign 결과를 알 수 없으면 COMMIT_UNKNOWN에 머무르며, reconcile()로 계약 상태를
      재확인한 뒤에만 commit()으로 재시도할 수 있다.
    - 커밋 이후 PDF 단계의 실패는 경고로만 기록되고 사가는 DONE으로 끝난다.
    - 한 번에 하나의 단계만 실행된다. 진행 중 중복 요청은 SigningBusyError.
    """

    def __init__(
        self,
        contract_id: str,
        otp_client,
        uploader,
        contract_client,
        composer,
        store,
        ticker,
        saga_repo=None,
        clock: Callable[[], datetime] = utcnow,
        on_tick: Optional[Callable[[int], None]] = None,
        on_expire: Optional[Callable[[], None]] = None,
        otp_ttl_seconds: int = 300,
        resend_cooldown_seconds: int = 60,
        code_length: int = 6,
        metadata: Optional[dict] = None
    ):
        self.otp_client = otp_client
        self.uploader = uploader
        self.contract_client = contract_client
        self.composer = composer
        self.store = store
        self.saga_repo = saga_repo
        self.clock = clock

        self.otp_ttl = timedelta(seconds=otp_ttl_seconds)
        self.resend_cooldown = timedelta(seconds=resend_cooldown_seconds)
        self.code_pattern = re.compile(r'[0-9]{%d}' % code_length)
        self.metadata = metadata or {}

        self.session = SigningSession(contract_id=contract_id, transaction_id=str(uuid.uuid4()))

        self.countdown = OtpCountdown(
            job_id=f"otp_countdown:{self.session.transaction_id}",
            ticker=ticker,
            clock=clock,
            on_tick=on_tick,
            on_expire=on_expire
        )

        self._step_lock = Lock()
        self._cancel_requested = False
        self._consumed_otp_session_ids = set()
        self._signer_signature: Optional[bytes] = None
        self._pdf_attached = False
        self._audit_inserted = False
        self.last_activity_at = clock()

    # ========================================
    # 상태 조회
    # ========================================

    @property
    def contract_id(self) -> str:
        return self.session.contract_id

    @property
    def state(self) -> SigningState:
        return self.session.state

    @property
    def is_terminal(self) -> bool:
        return self.session.state in TERMINAL_STATES

    @property
    def is_busy(self) -> bool:
        return self._step_lock.locked()

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_requested

    def remaining_seconds(self) -> int:
        if self.session.state != SigningState.OTP_PENDING:
            return 0
        return self.session.remaining_seconds(self.clock())

    def resend_available_in(self) -> int:
        if self.session.state != SigningState.OTP_PENDING or self.session.resend_available_at is None:
            return 0
        remaining = (self.session.resend_available_at - self.clock()).total_seconds()
        return max(0, math.ceil(remaining))

    def outcome(self) -> SigningOutcome:
        return SigningOutcome(
            committed=self.session.state in COMMITTED_STATES,
            state=self.session.state,
            signature_url=self.session.signature_url,
            pdf_url=self.session.pdf_url,
            pdf_attached=self._pdf_attached,
            warnings=list(self.session.warnings)
        )

    # ========================================
    # 공개 단계
    # ========================================

    def start(self, signer_name: str = None, signer_email: str = None, signer_phone: str = None) -> SigningSession:
        with self._step('start'):
            state = self.session.state
            #NOTE: 같은 시도가 이미 OTP를 받은 상태면 재발급하지 않고 그대로 사용
            if state in (SigningState.OTP_PENDING, SigningState.OTP_VERIFIED):
                logger.info(f"진행 중인 서명 시도를 재사용합니다 - contract: {self.contract_id}")
                return self.session
            if state != SigningState.IDLE:
                raise InvalidSigningStateError(state, 'start')

            pending = self.store.get()
            if pending is not None:
                self.session.signer_name = pending.signer_name or self.session.signer_name
                self.session.signer_email = pending.signer_email or self.session.signer_email
                self.session.signer_phone = pending.signer_phone or self.session.signer_phone

            if signer_name:
                self.session.signer_name = signer_name
            if signer_email:
                self.session.signer_email = signer_email
            if signer_phone:
                self.session.signer_phone = signer_phone

            if not self.session.signer_email:
                raise SigningValidationError(message="OTP를 받을 서명자 이메일이 없습니다.")

            self._issue_otp()
            return self.session

    def resend(self) -> SigningSession:
        with self._step('resend'):
            if self.session.state != SigningState.OTP_PENDING:
                raise InvalidSigningStateError(self.session.state, 'resend')

            now = self.clock()
            if now < self.session.resend_available_at:
                wait = math.ceil((self.session.resend_available_at - now).total_seconds())
                raise ResendTooEarlyError(wait)

            previous_id = self.session.otp_session_id
            self.countdown.cancel()
            self.session.state = SigningState.IDLE
            self.session.otp_session_id = None
            self.session.otp_expires_at = None
            logger.info(f"OTP 재발송 - contract: {self.contract_id}, 이전 세션: {previous_id}")

            self._issue_otp()
            return self.session

    def verify(self, code: str) -> SigningOutcome:
        with self._step('verify'):
            code = (code or '').strip()
            if not self.code_pattern.fullmatch(code):
                raise OtpFormatError()

            state = self.session.state
            otp_session_id = self.session.otp_session_id
            if state == SigningState.IDLE or not otp_session_id:
                raise OtpVerificationError(OtpFailureReason.SESSION_NOT_FOUND)
            # 한 번 검증에 성공한 OTP 세션은 이후 상태와 관계없이 재사용 불가
            if otp_session_id in self._consumed_otp_session_ids:
                raise OtpVerificationError(OtpFailureReason.INVALID_OR_EXPIRED_CODE, action=RecoveryAction.NONE)
            if state != SigningState.OTP_PENDING:
                raise InvalidSigningStateError(state, 'verify')

            if self.clock() >= self.session.otp_expires_at:
                raise OtpVerificationError(
                    OtpFailureReason.INVALID_OR_EXPIRED_CODE,
                    "OTP 유효 시간이 지났습니다. OTP를 다시 요청해주세요.",
                    RecoveryAction.RESEND_OTP
                )

            self._audit('mark_step_started', SigningStep.VERIFY_OTP)
            try:
                self.otp_client.verify(otp_session_id, code)
            except OtpVerificationError as e:
                #NOTE: 실패해도 상태와 카운트다운은 그대로 유지
                self._audit('mark_step_failed', SigningStep.VERIFY_OTP, e.reason.value)
                logger.info(f"OTP 검증 실패 - contract: {self.contract_id}, reason: {e.reason.value}")
                raise

            self._consumed_otp_session_ids.add(otp_session_id)
            self.countdown.cancel()
            self.session.state = SigningState.OTP_VERIFIED
            self._audit('mark_step_completed', SigningStep.VERIFY_OTP)
            logger.info(f"OTP 검증 완료 - contract: {self.contract_id}")

            return self._upload_and_commit()

    def reconcile(self) -> SigningOutcome:
        """결과 불명 상태에서 계약을 다시 조회해 커밋 여부를 확정"""
        with self._step('reconcile'):
            if self.session.state != SigningState.COMMIT_UNKNOWN:
                raise InvalidSigningStateError(self.session.state, 'reconcile')

            contract = self.contract_client.get_contract(self.contract_id)
            if self.contract_client.is_signed(contract):
                logger.info(f"재확인 결과 서명 반영됨 - contract: {self.contract_id}")
                return self._on_committed(contract)

            self.session.state = SigningState.ARTIFACT_UPLOADED
            self._audit('update_status', SagaStatus.IN_PROGRESS)
            logger.info(f"재확인 결과 서명 미반영, 재시도 가능 - contract: {self.contract_id}")
            return self.outcome()

    def commit(self) -> SigningOutcome:
        with self._step('commit'):
            if self.session.state != SigningState.ARTIFACT_UPLOADED:
                raise InvalidSigningStateError(self.session.state, 'commit')
            return self._commit()

    def cancel(self) -> bool:
        """
        커밋 전 단계에서만 취소 가능

        진행 중인 단계가 있으면 취소 요청만 기록하고 False를 반환한다.
        요청은 다음 체크포인트(업로드/계약 서명 호출 직전) 또는 진행 중 단계가 끝날 때 반영된다.
        """
        if not self._step_lock.acquire(blocking=False):
            state = self.session.state
            if state not in CANCELLABLE_STATES:
                raise CancelNotAllowedError(state)
            self._cancel_requested = True
            logger.info(f"진행 중 단계 이후 취소 예약 - contract: {self.contract_id}, state: {state.value}")
            return False

        try:
            state = self.session.state
            if state == SigningState.ABORTED:
                return True
            if state not in CANCELLABLE_STATES:
                raise CancelNotAllowedError(state)
            self._abort(AbortReason.CANCELLED, raise_error=False)
            return True
        finally:
            self._step_lock.release()

    def dispose(self) -> None:
        self.countdown.cancel()

    def is_stale(self, now: datetime, idle_timeout: timedelta) -> bool:
        """레지스트리 정리 대상 여부 (종료됐거나 오랫동안 요청이 없는 시도)"""
        if self.is_terminal:
            return True
        if self.is_busy:
            return False
        return now - self.last_activity_at >= idle_timeout

    # ========================================
    # 내부 단계
    # ========================================

    @contextmanager
    def _step(self, operation: str):
        if not self._step_lock.acquire(blocking=False):
            logger.info(f"중복 요청 거부 - contract: {self.contract_id}, operation: {operation}")
            raise SigningBusyError()
        try:
            # 이전 단계 진행 중에 예약된 취소
            if self._cancel_requested and self.session.state in CANCELLABLE_STATES:
                self._abort(AbortReason.CANCELLED)
            yield
        finally:
            try:
                #NOTE: 단계 실행 중 들어온 취소는 단계가 끝나는 즉시 반영 (성공/실패 무관)
                if self._cancel_requested and self.session.state in CANCELLABLE_STATES:
                    self._abort(AbortReason.CANCELLED, raise_error=False)
            finally:
                self.last_activity_at = self.clock()
                self._step_lock.release()

    def _issue_otp(self):
        self._audit('mark_step_started', SigningStep.ISSUE_OTP)
        try:
            result = self.otp_client.issue(self.contract_id, self.session.signer_email)
        except OtpIssueError as e:
            self._audit('mark_step_failed', SigningStep.ISSUE_OTP, e.message)
            logger.warning(f"OTP 발급 실패 - contract: {self.contract_id}: {e.message}")
            raise

        now = self.clock()
        expires_at = result.expires_at or now + self.otp_ttl

        self.session.otp_session_id = result.otp_session_id
        self.session.otp_issued_at = now
        self.session.otp_expires_at = expires_at
        self.session.resend_available_at = now + self.resend_cooldown
        self.session.state = SigningState.OTP_PENDING

        self.countdown.start(expires_at)
        self._audit('mark_step_completed', SigningStep.ISSUE_OTP)
        logger.info(f"OTP 발급 - contract: {self.contract_id}, 만료: {expires_at.isoformat()}")

    def _check_cancel(self):
        if self._cancel_requested:
            self._abort(AbortReason.CANCELLED)

    def _upload_and_commit(self) -> SigningOutcome:
        #NOTE: OTP가 이미 소비됐으므로 커밋 전 실패는 모두 ABORTED로 끝낸다
        try:
            self._upload_artifact()
        except SigningAbortedError:
            raise
        except Exception as e:
            logger.exception(f"서명 이미지 단계 예외 - contract: {self.contract_id}: {e}")
            self._audit('mark_step_failed', SigningStep.UPLOAD_ARTIFACT, str(e))
            self._abort(AbortReason.ARTIFACT_UPLOAD_FAILED)

        return self._commit()

    def _upload_artifact(self):
        self._check_cancel()

        #NOTE: 서명 이미지는 여기서 한 번만 읽고 비운다
        try:
            pending = self.store.take()
        except (redis.RedisError, ValueError, KeyError, TypeError) as e:
            logger.error(f"서명 세션 읽기 실패 - contract: {self.contract_id}: {e}")
            pending = None

        if pending is None or pending.signature_artifact is None:
            self._abort(AbortReason.MISSING_ARTIFACT)

        artifact = pending.signature_artifact
        self.session.signature_artifact = artifact

        self._audit('mark_step_started', SigningStep.UPLOAD_ARTIFACT)
        try:
            uploaded = self.uploader.upload(artifact)
        except ArtifactUploadError as e:
            self._audit('mark_step_failed', SigningStep.UPLOAD_ARTIFACT, e.message)
            self._abort(AbortReason.ARTIFACT_UPLOAD_FAILED, e.message)

        self.session.signature_url = uploaded.url
        self._signer_signature = uploaded.content
        self.session.state = SigningState.ARTIFACT_UPLOADED
        self._audit('mark_step_completed', SigningStep.UPLOAD_ARTIFACT)

    def _commit(self) -> SigningOutcome:
        self._check_cancel()

        self._audit('mark_step_started', SigningStep.SIGN_CONTRACT)
        try:
            self.contract_client.sign(
                self.contract_id,
                self.session.signature_url,
                idempotency_key=self.session.transaction_id
            )
        except CommitOutcomeUnknownError as e:
            self.session.state = SigningState.COMMIT_UNKNOWN
            self._audit('mark_step_failed', SigningStep.SIGN_CONTRACT, e.message)
            self._audit('update_status', SagaStatus.UNCERTAIN)
            logger.error(f"계약 서명 결과 불명 - contract: {self.contract_id}, transaction: {self.session.transaction_id}")
            raise
        except ContractSignError as e:
            self._audit('mark_step_failed', SigningStep.SIGN_CONTRACT, e.message)
            self._abort(AbortReason.CONTRACT_SIGN_FAILED, e.message)

        return self._on_committed()

    def _on_committed(self, contract: Optional[dict] = None) -> SigningOutcome:
        self.session.state = SigningState.COMMITTED
        self._audit('mark_step_completed', SigningStep.SIGN_CONTRACT)
        self._audit('update_status', SagaStatus.COMMITTED)
        logger.info(f"계약 서명 완료 - contract: {self.contract_id}")

        self._attach_signed_pdf(contract)

        self.session.state = SigningState.DONE
        for failure in self._terminate():
            #NOTE: 정리 실패도 커밋 이후이므로 경고로만 남김
            self.session.warnings.append(f"서명 세션 정리에 실패했습니다: {failure}")
        self._audit('update_status', SagaStatus.COMPLETED, warnings=list(self.session.warnings))
        return self.outcome()

    def _attach_signed_pdf(self, contract: Optional[dict] = None):
        self._audit('mark_step_started', SigningStep.COMPOSE_PDF)
        try:
            if contract is None:
                contract = self.contract_client.get_contract(self.contract_id)
            pdf_url = self.composer.compose_and_upload(
                contract,
                signer_signature=self._signer_signature or self.session.signature_url,
                owner_signature=contract_field(contract, 'ownerSignature')
            )
            self.session.pdf_url = pdf_url
            self.contract_client.attach_signed_pdf(self.contract_id, pdf_url)
        except Exception as e:
            #NOTE: 커밋 이후 단계는 실패해도 서명 결과에 영향을 주지 않음
            warning = f"서명 계약서 PDF를 생성하지 못했습니다: {e}"
            self.session.warnings.append(warning)
            self.session.state = SigningState.PDF_SKIPPED
            self._audit('mark_step_skipped', SigningStep.COMPOSE_PDF, str(e))
            logger.warning(f"PDF 단계 실패 (서명은 유지됨) - contract: {self.contract_id}: {e}")
            return

        self._pdf_attached = True
        self.session.state = SigningState.PDF_ATTACHED
        self._audit('mark_step_completed', SigningStep.COMPOSE_PDF)

    def _abort(self, reason: AbortReason, message: str = None, raise_error: bool = True):
        self.session.state = SigningState.ABORTED
        self.session.abort_reason = reason.value
        self._terminate()
        self._audit('update_status', SagaStatus.ABORTED, abort_reason=reason.value)
        logger.warning(f"서명 사가 중단 - contract: {self.contract_id}, reason: {reason.value}")
        if raise_error:
            raise SigningAbortedError(reason, message)

    def _terminate(self) -> List[str]:
        """카운트다운과 서명 세션 정리. 실패는 예외 대신 목록으로 돌려준다"""
        failures = []
        try:
            self.countdown.cancel()
        except Exception as e:
            logger.warning(f"카운트다운 정리 실패 - contract: {self.contract_id}: {e}")
            failures.append(f"countdown: {e}")
        try:
            self.store.clear()
        except redis.RedisError as e:
            logger.warning(f"서명 세션 삭제 실패 - contract: {self.contract_id}: {e}")
            failures.append(f"session store: {e}")
        return failures

    # ========================================
    # 감사 로그
    # ========================================

    def _audit(self, method: str, *args, **kwargs):
        if self.saga_repo is None:
            return
        try:
            if not self._audit_inserted:
                self.saga_repo.insert(SigningSagaLog(
                    transaction_id=self.session.transaction_id,
                    contract_id=self.contract_id,
                    metadata=self.metadata
                ))
                self._audit_inserted = True
            getattr(self.saga_repo, method)(self.session.transaction_id, *args, **kwargs)
        except PyMongoError as e:
            logger.error(f"서명 사가 로그 기록 실패 ({method}): {e}")
