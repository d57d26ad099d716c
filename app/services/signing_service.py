from typing import Dict, Optional

import requests
from flask import current_app

import common.extensions as extensions
from common.extensions import scheduler, socketio
from common.enum.error_code import APIError
from common.exception.exceptions import BusinessError, InvalidSignatureError
from common.cache.signing_session_store import create_session_store
from common.clients.artifact_uploader import ArtifactUploader
from common.clients.contract_client import ContractMutationClient
from common.clients.otp_client import OtpChallengeClient, RedisOtpChallengeService
from common.pdf.document_composer import DocumentComposer
from common.saga.countdown import SchedulerTicker
from common.saga.registry import SigningSessionRegistry
from common.saga.signing_orchestrator import SigningSagaOrchestrator
from common.utils.email_utils import send_signing_otp_email
from common.utils.logging_utils import get_logger
from app.models.signing_session import SignatureArtifact, SignatureKind, SigningSession, SigningState
from app.models.mongodb.saga_transaction_log import SigningSagaLogRepository
from app.dto.signing import CancelResultDto, PendingSignatureDto, SigningOutcomeDto, SigningStatusDto

logger = get_logger('signing_service')

SIGNING_NAMESPACE = '/signing'

#NOTE: SigningSessionRegistry 싱글톤 인스턴스
registry = SigningSessionRegistry()


def build_scope(user_id: str, client_session_id: Optional[str] = None) -> str:
    """같은 사용자라도 탭(클라이언트 세션)마다 독립된 서명 시도를 가진다"""
    if client_session_id:
        return f"{user_id}:{client_session_id}"
    return str(user_id)


def signing_room(scope: str, contract_id: str) -> str:
    return f"signing:{scope}:{contract_id}"


def emit_countdown(room: str, remaining_seconds: int):
    socketio.emit('otp_countdown', {'remaining_seconds': remaining_seconds}, to=room, namespace=SIGNING_NAMESPACE)


def emit_expired(room: str):
    socketio.emit('otp_expired', {'remaining_seconds': 0}, to=room, namespace=SIGNING_NAMESPACE)


def _http_session(token: Optional[str]) -> requests.Session:
    session = requests.Session()
    if token:
        session.headers['Authorization'] = f"Bearer {token}"
    return session


def _build_otp_client(http: requests.Session):
    config = current_app.config
    if config.get('OTP_SERVICE_URL'):
        return OtpChallengeClient(config['OTP_SERVICE_URL'], http, config['HTTP_TIMEOUT_SECONDS'])

    app = current_app._get_current_object()
    expire_minutes = max(1, config['OTP_TTL_SECONDS'] // 60)

    def sender(email: str, code: str, contract_id: str) -> bool:
        with app.app_context():
            return send_signing_otp_email(email, code, contract_id, expire_minutes)

    return RedisOtpChallengeService(
        extensions.redis_client,
        sender=sender,
        ttl_seconds=config['OTP_TTL_SECONDS'],
        code_length=config['OTP_CODE_LENGTH']
    )


def build_orchestrator(scope: str, contract_id: str, token: Optional[str] = None) -> SigningSagaOrchestrator:
    config = current_app.config
    http = _http_session(token)
    timeout = config['HTTP_TIMEOUT_SECONDS']

    uploader = ArtifactUploader(
        config['STORAGE_SERVICE_URL'],
        session=http,
        timeout=timeout,
        max_bytes=config['SIGNATURE_MAX_BYTES'],
        font_path=config.get('SIGNATURE_FONT_PATH')
    )
    saga_repo = SigningSagaLogRepository(extensions.mongo_db) if extensions.mongo_db is not None else None
    room = signing_room(scope, contract_id)

    return SigningSagaOrchestrator(
        contract_id=contract_id,
        otp_client=_build_otp_client(http),
        uploader=uploader,
        contract_client=ContractMutationClient(config['CONTRACT_SERVICE_URL'], session=http, timeout=timeout),
        #NOTE: 임대인 서명 이미지는 외부 URL이므로 사용자 토큰 없는 세션으로 받는다
        composer=DocumentComposer(uploader, config['LESSOR_DISPLAY_NAME'], session=requests.Session(), timeout=timeout),
        store=create_session_store(scope, contract_id, config['SIGNING_SESSION_TTL_SECONDS']),
        ticker=SchedulerTicker(scheduler),
        saga_repo=saga_repo,
        on_tick=lambda remaining: emit_countdown(room, remaining),
        on_expire=lambda: emit_expired(room),
        otp_ttl_seconds=config['OTP_TTL_SECONDS'],
        resend_cooldown_seconds=config['OTP_RESEND_COOLDOWN_SECONDS'],
        code_length=config['OTP_CODE_LENGTH'],
        metadata={'scope': scope}
    )


class SigningService:

    @staticmethod
    def save_pending_signature(scope: str, contract_id: str, data: Dict) -> PendingSignatureDto:
        """서명 작성 화면에서 서명 화면으로 넘길 서명 데이터 저장"""
        kind = SignatureKind(data['kind'])
        payload = data['payload']

        if kind != SignatureKind.TYPED and not payload.startswith('data:image/'):
            raise InvalidSignatureError("서명 이미지는 data:image/... 형식이어야 합니다.")

        session = SigningSession(
            contract_id=contract_id,
            signer_name=data.get('signer_name'),
            signer_email=data.get('signer_email'),
            signer_phone=data.get('signer_phone'),
            signature_artifact=SignatureArtifact(kind=kind, payload=payload, file_name=data.get('file_name'))
        )

        store = create_session_store(scope, contract_id, current_app.config['SIGNING_SESSION_TTL_SECONDS'])
        store.put(session)
        logger.info(f"서명 데이터 저장 - contract: {contract_id}, kind: {kind.value}")

        return PendingSignatureDto(
            contract_id=contract_id,
            kind=kind.value,
            signer_name=session.signer_name,
            signer_email=session.signer_email
        )

    @staticmethod
    def start_signing(scope: str, contract_id: str, token: Optional[str], data: Dict,
                      default_email: Optional[str] = None) -> SigningStatusDto:
        orchestrator = registry.get_or_create(
            scope,
            contract_id,
            lambda: build_orchestrator(scope, contract_id, token)
        )

        signer_name = data.get('signer_name')
        signer_email = data.get('signer_email')
        signer_phone = data.get('signer_phone')

        if orchestrator.state == SigningState.IDLE:
            contract = orchestrator.contract_client.get_contract(contract_id)
            if orchestrator.contract_client.is_signed(contract):
                raise BusinessError(APIError.CONTRACT_ALREADY_SIGNED)

            #NOTE: 입력값 > 서명 작성 화면에서 넘긴 값 > 계약 신원 정보 > 토큰 이메일 순으로 사용
            pending = orchestrator.store.get()
            profile = ContractMutationClient.signer_profile(contract)
            if not signer_email and not (pending and pending.signer_email):
                signer_email = profile['email'] or default_email
            if not signer_name and not (pending and pending.signer_name):
                signer_name = profile['name']
            if not signer_phone and not (pending and pending.signer_phone):
                signer_phone = profile['phone']

        try:
            orchestrator.start(signer_name=signer_name, signer_email=signer_email, signer_phone=signer_phone)
            return SigningStatusDto.from_orchestrator(orchestrator)
        finally:
            SigningService._release_if_finished(scope, contract_id, orchestrator)

    @staticmethod
    def resend(scope: str, contract_id: str) -> SigningStatusDto:
        orchestrator = SigningService._get_attempt(scope, contract_id)
        try:
            orchestrator.resend()
            return SigningStatusDto.from_orchestrator(orchestrator)
        finally:
            SigningService._release_if_finished(scope, contract_id, orchestrator)

    @staticmethod
    def verify(scope: str, contract_id: str, code: str) -> SigningOutcomeDto:
        orchestrator = SigningService._get_attempt(scope, contract_id)
        try:
            outcome = orchestrator.verify(code)
            return SigningOutcomeDto.from_outcome(contract_id, outcome)
        finally:
            SigningService._release_if_finished(scope, contract_id, orchestrator)

    @staticmethod
    def reconcile(scope: str, contract_id: str) -> SigningOutcomeDto:
        orchestrator = SigningService._get_attempt(scope, contract_id)
        try:
            outcome = orchestrator.reconcile()
            return SigningOutcomeDto.from_outcome(contract_id, outcome)
        finally:
            SigningService._release_if_finished(scope, contract_id, orchestrator)

    @staticmethod
    def commit(scope: str, contract_id: str) -> SigningOutcomeDto:
        orchestrator = SigningService._get_attempt(scope, contract_id)
        try:
            outcome = orchestrator.commit()
            return SigningOutcomeDto.from_outcome(contract_id, outcome)
        finally:
            SigningService._release_if_finished(scope, contract_id, orchestrator)

    @staticmethod
    def cancel(scope: str, contract_id: str) -> CancelResultDto:
        orchestrator = registry.get(scope, contract_id)
        if orchestrator is None:
            #NOTE: 시작 전 취소 - 넘겨받은 서명 데이터만 정리
            create_session_store(scope, contract_id, current_app.config['SIGNING_SESSION_TTL_SECONDS']).clear()
            return CancelResultDto(contract_id=contract_id, state=SigningState.ABORTED.value, cancelled=True)

        cancelled = orchestrator.cancel()
        SigningService._release_if_finished(scope, contract_id, orchestrator)
        return CancelResultDto(contract_id=contract_id, state=orchestrator.state.value, cancelled=cancelled)

    @staticmethod
    def get_status(scope: str, contract_id: str) -> SigningStatusDto:
        orchestrator = SigningService._get_attempt(scope, contract_id)
        return SigningStatusDto.from_orchestrator(orchestrator)

    @staticmethod
    def _get_attempt(scope: str, contract_id: str) -> SigningSagaOrchestrator:
        orchestrator = registry.get(scope, contract_id)
        if orchestrator is None:
            raise BusinessError(APIError.SIGNING_SESSION_NOT_FOUND)
        return orchestrator

    @staticmethod
    def _release_if_finished(scope: str, contract_id: str, orchestrator: SigningSagaOrchestrator):
        """종료된 시도는 결과를 돌려준 뒤 레지스트리에서 뺀다"""
        if orchestrator.is_terminal:
            registry.remove(scope, contract_id, orchestrator)
