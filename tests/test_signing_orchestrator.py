from datetime import timedelta

import pytest
import redis
from pymongo.errors import PyMongoError

from app.models.signing_session import SigningState
from app.models.mongodb.saga_transaction_log import SagaStatus
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
    SigningBusyError
)
from tests.conftest import CONTRACT_ID, SIGNER_EMAIL, FakeSagaRepo


def test_start_issues_otp_and_starts_countdown(orchestrator, otp_client, ticker):
    session = orchestrator.start()

    assert session.state == SigningState.OTP_PENDING
    assert otp_client.issue_calls == [(CONTRACT_ID, SIGNER_EMAIL)]
    assert session.otp_session_id == 'otp-1'
    assert orchestrator.remaining_seconds() == 300
    assert orchestrator.resend_available_in() == 60
    assert len(ticker.jobs) == 1


def test_start_prefills_signer_from_pending_signature(orchestrator):
    session = orchestrator.start()

    assert session.signer_name == 'Nguyen Van A'
    assert session.masked_phone == '******4567'


def test_start_again_reuses_pending_attempt(orchestrator, otp_client):
    orchestrator.start()
    orchestrator.start()

    assert len(otp_client.issue_calls) == 1


def test_start_failure_stays_idle(orchestrator, otp_client, ticker):
    otp_client.fail_issue = True

    with pytest.raises(OtpIssueError) as exc_info:
        orchestrator.start()

    assert exc_info.value.action == RecoveryAction.RETRY_STEP
    assert orchestrator.state == SigningState.IDLE
    assert ticker.jobs == {}


def test_wrong_code_keeps_pending_and_countdown_running(orchestrator, clock, ticker):
    orchestrator.start()
    expires_at = orchestrator.session.otp_expires_at
    clock.advance(30)

    with pytest.raises(OtpVerificationError) as exc_info:
        orchestrator.verify('999999')

    assert exc_info.value.reason == OtpFailureReason.INVALID_OR_EXPIRED_CODE
    assert orchestrator.state == SigningState.OTP_PENDING
    assert orchestrator.session.otp_expires_at == expires_at
    assert orchestrator.remaining_seconds() == 270
    assert len(ticker.jobs) == 1


@pytest.mark.parametrize('code', ['12345', '1234567', 'abcdef', '', '12 456'])
def test_malformed_code_rejected_locally(orchestrator, otp_client, code):
    orchestrator.start()

    with pytest.raises(OtpFormatError):
        orchestrator.verify(code)

    assert otp_client.verify_calls == []
    assert orchestrator.state == SigningState.OTP_PENDING


def test_expired_countdown_fails_without_network(orchestrator, otp_client, clock):
    orchestrator.start()
    clock.advance(300)

    with pytest.raises(OtpVerificationError) as exc_info:
        orchestrator.verify('100001')

    assert exc_info.value.reason == OtpFailureReason.INVALID_OR_EXPIRED_CODE
    assert exc_info.value.action == RecoveryAction.RESEND_OTP
    assert otp_client.verify_calls == []


def test_verify_before_start_is_session_not_found(orchestrator, otp_client):
    with pytest.raises(OtpVerificationError) as exc_info:
        orchestrator.verify('100001')

    assert exc_info.value.reason == OtpFailureReason.SESSION_NOT_FOUND
    assert exc_info.value.action == RecoveryAction.RESEND_OTP
    assert otp_client.verify_calls == []


def test_happy_path_commits_and_attaches_pdf(orchestrator, contract_client, composer, store, ticker):
    orchestrator.start()
    outcome = orchestrator.verify('100001')

    assert outcome.committed is True
    assert outcome.state == SigningState.DONE
    assert outcome.pdf_attached is True
    assert outcome.pdf_url == 'https://storage.test/Contract-3f1c9a7e-signed.pdf'
    assert outcome.warnings == []

    assert contract_client.sign_calls == [
        (CONTRACT_ID, 'https://storage.test/signature-abc.png', orchestrator.session.transaction_id)
    ]
    assert contract_client.attach_calls == [(CONTRACT_ID, outcome.pdf_url)]
    assert composer.calls[0][1] == b'signature-png'
    assert store.get() is None
    assert ticker.jobs == {}


def test_second_verify_with_same_code_fails(orchestrator):
    orchestrator.start()
    orchestrator.verify('100001')

    with pytest.raises(OtpVerificationError) as exc_info:
        orchestrator.verify('100001')

    assert exc_info.value.reason == OtpFailureReason.INVALID_OR_EXPIRED_CODE


def test_resend_before_cooldown_rejected_without_contacting_service(orchestrator, otp_client, clock):
    orchestrator.start()
    clock.advance(30)

    with pytest.raises(ResendTooEarlyError) as exc_info:
        orchestrator.resend()

    assert exc_info.value.retry_after_seconds == 30
    assert len(otp_client.issue_calls) == 1
    assert orchestrator.session.otp_session_id == 'otp-1'


def test_resend_after_cooldown_resets_countdown_and_orphans_old_code(orchestrator, otp_client, clock, ticker):
    orchestrator.start()
    clock.advance(65)
    assert orchestrator.remaining_seconds() == 235

    session = orchestrator.resend()

    assert session.otp_session_id == 'otp-2'
    assert session.state == SigningState.OTP_PENDING
    assert orchestrator.remaining_seconds() == 300
    assert len(ticker.jobs) == 1

    with pytest.raises(OtpVerificationError):
        orchestrator.verify('100001')

    outcome = orchestrator.verify('100002')
    assert outcome.committed is True


def test_failed_reissue_on_resend_stays_idle(orchestrator, otp_client, clock, ticker):
    orchestrator.start()
    clock.advance(60)
    otp_client.fail_issue = True

    with pytest.raises(OtpIssueError):
        orchestrator.resend()

    assert orchestrator.state == SigningState.IDLE
    assert ticker.jobs == {}

    with pytest.raises(OtpVerificationError) as exc_info:
        orchestrator.verify('100001')
    assert exc_info.value.reason == OtpFailureReason.SESSION_NOT_FOUND

    otp_client.fail_issue = False
    orchestrator.start()
    assert orchestrator.state == SigningState.OTP_PENDING


def test_pdf_failure_after_commit_is_only_a_warning(orchestrator, composer, contract_client, store):
    composer.error = RuntimeError('font not found')
    orchestrator.start()

    outcome = orchestrator.verify('100001')

    assert outcome.committed is True
    assert outcome.state == SigningState.DONE
    assert outcome.pdf_attached is False
    assert len(outcome.warnings) == 1
    assert 'font not found' in outcome.warnings[0]
    assert contract_client.attach_calls == []
    assert store.get() is None


def test_attach_failure_keeps_uploaded_pdf_url(orchestrator, contract_client):
    contract_client.attach_error = RuntimeError('503')
    orchestrator.start()

    outcome = orchestrator.verify('100001')

    assert outcome.committed is True
    assert outcome.pdf_attached is False
    assert outcome.pdf_url is not None
    assert len(outcome.warnings) == 1


def test_missing_artifact_aborts_without_contract_call(orchestrator, store, contract_client, uploader):
    orchestrator.start()
    store.clear()

    with pytest.raises(SigningAbortedError) as exc_info:
        orchestrator.verify('100001')

    assert exc_info.value.reason == AbortReason.MISSING_ARTIFACT
    assert exc_info.value.data['committed'] is False
    assert orchestrator.state == SigningState.ABORTED
    assert uploader.uploads == []
    assert contract_client.sign_calls == []
    assert contract_client.get_calls == []


def test_upload_failure_never_calls_sign(orchestrator, uploader, contract_client, store, ticker):
    uploader.error = ArtifactUploadError()
    orchestrator.start()

    with pytest.raises(SigningAbortedError) as exc_info:
        orchestrator.verify('100001')

    assert exc_info.value.reason == AbortReason.ARTIFACT_UPLOAD_FAILED
    assert exc_info.value.action == RecoveryAction.RESTART
    assert orchestrator.session.abort_reason == 'artifact_upload_failed'
    assert contract_client.sign_calls == []
    assert store.get() is None
    assert ticker.jobs == {}


def test_clean_sign_failure_aborts_before_commit(orchestrator, contract_client):
    contract_client.sign_error = ContractSignError(status_code=400)
    orchestrator.start()

    with pytest.raises(SigningAbortedError) as exc_info:
        orchestrator.verify('100001')

    assert exc_info.value.reason == AbortReason.CONTRACT_SIGN_FAILED
    assert orchestrator.outcome().committed is False


def test_uncertain_sign_then_reconcile_finds_signed(orchestrator, contract_client, store):
    contract_client.sign_error = CommitOutcomeUnknownError()
    contract_client.apply_sign_on_error = True
    orchestrator.start()

    with pytest.raises(CommitOutcomeUnknownError) as exc_info:
        orchestrator.verify('100001')

    assert exc_info.value.action == RecoveryAction.RECHECK_STATUS
    assert orchestrator.state == SigningState.COMMIT_UNKNOWN

    with pytest.raises(InvalidSigningStateError):
        orchestrator.commit()
    with pytest.raises(CancelNotAllowedError):
        orchestrator.cancel()

    outcome = orchestrator.reconcile()

    assert outcome.committed is True
    assert outcome.state == SigningState.DONE
    assert len(contract_client.sign_calls) == 1
    assert store.get() is None


def test_uncertain_sign_then_reconcile_allows_retry_with_same_key(orchestrator, contract_client):
    contract_client.sign_error = CommitOutcomeUnknownError()
    orchestrator.start()

    with pytest.raises(CommitOutcomeUnknownError):
        orchestrator.verify('100001')

    outcome = orchestrator.reconcile()
    assert outcome.committed is False
    assert outcome.state == SigningState.ARTIFACT_UPLOADED

    contract_client.sign_error = None
    outcome = orchestrator.commit()

    assert outcome.committed is True
    keys = {call[2] for call in contract_client.sign_calls}
    assert keys == {orchestrator.session.transaction_id}
    assert len(contract_client.sign_calls) == 2


def test_cancel_from_pending_clears_session(orchestrator, store, ticker):
    orchestrator.start()

    assert orchestrator.cancel() is True

    assert orchestrator.state == SigningState.ABORTED
    assert orchestrator.session.abort_reason == AbortReason.CANCELLED.value
    assert store.get() is None
    assert ticker.jobs == {}

    # 중복 취소는 영향 없음
    assert orchestrator.cancel() is True


def test_cancel_after_commit_not_allowed(orchestrator):
    orchestrator.start()
    orchestrator.verify('100001')

    with pytest.raises(CancelNotAllowedError):
        orchestrator.cancel()


def test_double_submit_rejected_while_step_in_flight(orchestrator, otp_client):
    orchestrator.start()
    nested = []

    def submit_again():
        try:
            orchestrator.verify('100001')
        except SigningBusyError as e:
            nested.append(e)

    otp_client.on_verify = submit_again
    outcome = orchestrator.verify('100001')

    assert len(nested) == 1
    assert outcome.committed is True
    assert len(otp_client.verify_calls) == 1


def test_cancel_during_verify_honoured_before_commit(orchestrator, otp_client, uploader, contract_client):
    orchestrator.start()
    results = []
    otp_client.on_verify = lambda: results.append(orchestrator.cancel())

    with pytest.raises(SigningAbortedError) as exc_info:
        orchestrator.verify('100001')

    assert results == [False]
    assert exc_info.value.reason == AbortReason.CANCELLED
    assert uploader.uploads == []
    assert contract_client.sign_calls == []


def test_countdown_ticks_from_wall_clock_and_expires(orchestrator, clock, ticker, events):
    orchestrator.start()

    clock.advance(1)
    ticker.fire()
    clock.advance(10)
    ticker.fire()
    assert events['ticks'] == [299, 289]

    clock.advance(289)
    ticker.fire()
    assert events['ticks'][-1] == 0
    assert events['expired'] == 1
    assert ticker.jobs == {}
    assert orchestrator.state == SigningState.OTP_PENDING


def test_dispose_makes_late_ticks_noop(orchestrator, ticker, events):
    orchestrator.start()
    orchestrator.dispose()

    orchestrator.countdown.tick()

    assert events['ticks'] == []
    assert ticker.jobs == {}


def test_audit_log_records_saga_progress(make_orchestrator, pending_signature):
    repo = FakeSagaRepo()
    orchestrator = make_orchestrator(saga_repo=repo)
    orchestrator.start()
    orchestrator.verify('100001')

    assert repo.calls[0][0] == 'insert'
    assert repo.statuses() == [SagaStatus.COMMITTED, SagaStatus.COMPLETED]


def test_audit_log_failure_does_not_affect_saga(make_orchestrator, pending_signature):
    repo = FakeSagaRepo()
    repo.error = PyMongoError('mongo down')
    orchestrator = make_orchestrator(saga_repo=repo)
    orchestrator.start()

    outcome = orchestrator.verify('100001')

    assert outcome.committed is True


def test_store_cleanup_failure_after_commit_is_only_a_warning(orchestrator, store, ticker, contract_client, monkeypatch):
    def clear():
        raise redis.ConnectionError('redis down')

    monkeypatch.setattr(store, 'clear', clear)
    orchestrator.start()

    outcome = orchestrator.verify('100001')

    assert outcome.committed is True
    assert outcome.state == SigningState.DONE
    assert outcome.pdf_attached is True
    assert len(outcome.warnings) == 1
    assert 'redis down' in outcome.warnings[0]
    assert len(contract_client.sign_calls) == 1
    assert ticker.jobs == {}
    assert orchestrator.is_terminal is True


def test_unreadable_pending_signature_aborts_as_missing_artifact(orchestrator, store, uploader, contract_client,
                                                                 ticker, monkeypatch):
    def take():
        raise redis.ConnectionError('redis down')

    monkeypatch.setattr(store, 'take', take)
    orchestrator.start()

    with pytest.raises(SigningAbortedError) as exc_info:
        orchestrator.verify('100001')

    assert exc_info.value.reason == AbortReason.MISSING_ARTIFACT
    assert orchestrator.state == SigningState.ABORTED
    assert orchestrator.is_terminal is True
    assert uploader.uploads == []
    assert contract_client.sign_calls == []
    assert ticker.jobs == {}


def test_unexpected_upload_error_aborts_before_commit(orchestrator, uploader, contract_client):
    uploader.error = RuntimeError('disk full')
    orchestrator.start()

    with pytest.raises(SigningAbortedError) as exc_info:
        orchestrator.verify('100001')

    assert exc_info.value.reason == AbortReason.ARTIFACT_UPLOAD_FAILED
    assert orchestrator.state == SigningState.ABORTED
    assert contract_client.sign_calls == []


def test_cancel_during_start_applied_when_issue_returns(orchestrator, otp_client, store, ticker):
    results = []
    issue = otp_client.issue

    def issue_then_cancel(contract_id, email):
        results.append(orchestrator.cancel())
        return issue(contract_id, email)

    otp_client.issue = issue_then_cancel

    session = orchestrator.start()

    assert results == [False]
    assert session.state == SigningState.ABORTED
    assert session.abort_reason == AbortReason.CANCELLED.value
    assert ticker.jobs == {}
    assert store.get() is None
    assert orchestrator.is_busy is False


def test_cancel_during_failed_verify_still_aborts(orchestrator, otp_client, store, ticker):
    orchestrator.start()
    results = []
    otp_client.on_verify = lambda: results.append(orchestrator.cancel())

    with pytest.raises(OtpVerificationError):
        orchestrator.verify('999999')

    assert results == [False]
    assert orchestrator.state == SigningState.ABORTED
    assert orchestrator.session.abort_reason == AbortReason.CANCELLED.value
    assert ticker.jobs == {}
    assert store.get() is None


def test_idle_attempt_becomes_stale_after_timeout(orchestrator, clock):
    orchestrator.start()
    idle_timeout = timedelta(minutes=30)

    clock.advance(29 * 60)
    assert orchestrator.is_stale(clock(), idle_timeout) is False

    clock.advance(60)
    assert orchestrator.is_stale(clock(), idle_timeout) is True


def test_finished_attempt_is_stale_immediately(orchestrator, clock):
    orchestrator.start()
    orchestrator.cancel()

    assert orchestrator.is_stale(clock(), timedelta(minutes=30)) is True
