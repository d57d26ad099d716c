import base64
import io
from datetime import datetime, timedelta, timezone

import pytest
import requests
from PIL import Image

from app.models.signing_session import SignatureArtifact, SignatureKind, SigningSession
from common.cache.signing_session_store import InMemorySigningSessionStore
from common.clients.artifact_uploader import UploadedArtifact
from common.clients.contract_client import ContractMutationClient
from common.clients.otp_client import OtpIssueResult
from common.exception.exceptions import (
    OtpFailureReason,
    OtpIssueError,
    OtpVerificationError
)
from common.saga.registry import SigningSessionRegistry
from common.saga.signing_orchestrator import SigningSagaOrchestrator

CONTRACT_ID = '3f1c9a7e-5b2d-4e11-9c3a-0d8f6b2a1e44'
SIGNER_EMAIL = 'tenant@example.com'


def make_png_data_url(size=(20, 10)) -> str:
    buffer = io.BytesIO()
    Image.new('RGB', size, 'black').save(buffer, format='PNG')
    return 'data:image/png;base64,' + base64.b64encode(buffer.getvalue()).decode()


def make_contract(**overrides):
    contract = {
        'id': CONTRACT_ID,
        'contractStatus': 'Pending',
        'createdAt': '2026-01-02T09:00:00Z',
        'checkinDate': '2026-02-01',
        'checkoutDate': '2027-02-01',
        'roomPrice': 4500000,
        'depositAmount': 9000000,
        'identityProfiles': [
            {'fullName': 'Nguyen Van A', 'phoneNumber': '0901234567', 'email': SIGNER_EMAIL}
        ]
    }
    contract.update(overrides)
    return contract


class Clock:
    def __init__(self, now=None):
        self.now = now or datetime(2026, 3, 1, 9, 0, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now = self.now + timedelta(seconds=seconds)


class ManualTicker:
    """테스트에서 직접 틱을 발생시키는 티커"""

    def __init__(self):
        self.jobs = {}
        self.cancelled = []

    def schedule(self, job_id, func):
        self.jobs[job_id] = func

    def cancel(self, job_id):
        self.cancelled.append(job_id)
        self.jobs.pop(job_id, None)

    def fire(self):
        for func in list(self.jobs.values()):
            func()


class FakeRedis:
    """테스트용 최소 Redis (decode_responses=True 동작)"""

    def __init__(self):
        self.data = {}
        self.ttls = {}

    def get(self, key):
        return self.data.get(key)

    def set(self, key, value):
        self.data[key] = value
        return True

    def setex(self, key, ttl, value):
        self.data[key] = value
        self.ttls[key] = ttl
        return True

    def getdel(self, key):
        self.ttls.pop(key, None)
        return self.data.pop(key, None)

    def delete(self, *keys):
        removed = 0
        for key in keys:
            if key in self.data:
                del self.data[key]
                self.ttls.pop(key, None)
                removed += 1
        return removed

    def exists(self, key):
        return int(key in self.data)

    def ping(self):
        return True


class FakeOtpClient:

    def __init__(self):
        self.issue_calls = []
        self.verify_calls = []
        self.active = {}
        self.fail_issue = False
        self.verify_error = None
        self.on_verify = None

    def code_for(self, otp_session_id):
        return self.active.get(otp_session_id) or str(100000 + int(otp_session_id.split('-')[1]))

    def issue(self, contract_id, email):
        self.issue_calls.append((contract_id, email))
        if self.fail_issue:
            raise OtpIssueError()
        otp_session_id = f"otp-{len(self.issue_calls)}"
        #NOTE: 계약당 활성 세션은 하나
        self.active = {otp_session_id: str(100000 + len(self.issue_calls))}
        return OtpIssueResult(otp_session_id=otp_session_id)

    def verify(self, otp_session_id, code):
        self.verify_calls.append((otp_session_id, code))
        if self.on_verify is not None:
            self.on_verify()
        if self.verify_error is not None:
            raise self.verify_error
        if self.active.get(otp_session_id) != code:
            raise OtpVerificationError(OtpFailureReason.INVALID_OR_EXPIRED_CODE)
        del self.active[otp_session_id]


class FakeUploader:

    def __init__(self):
        self.uploads = []
        self.error = None

    def upload(self, artifact):
        self.uploads.append(artifact)
        if self.error is not None:
            raise self.error
        return UploadedArtifact(
            url='https://storage.test/signature-abc.png',
            content=b'signature-png',
            content_type='image/png',
            file_name='signature-abc.png'
        )


class FakeContractClient:

    is_signed = staticmethod(ContractMutationClient.is_signed)

    def __init__(self):
        self.contract = make_contract()
        self.sign_calls = []
        self.get_calls = []
        self.attach_calls = []
        self.sign_error = None
        self.attach_error = None
        self.apply_sign_on_error = False

    def get_contract(self, contract_id):
        self.get_calls.append(contract_id)
        return dict(self.contract)

    def sign(self, contract_id, signature_url, idempotency_key=None):
        self.sign_calls.append((contract_id, signature_url, idempotency_key))
        if self.sign_error is not None:
            if self.apply_sign_on_error:
                self.contract['tenantSignature'] = signature_url
            raise self.sign_error
        self.contract['tenantSignature'] = signature_url

    def attach_signed_pdf(self, contract_id, pdf_url):
        self.attach_calls.append((contract_id, pdf_url))
        if self.attach_error is not None:
            raise self.attach_error


class FakeComposer:

    def __init__(self):
        self.calls = []
        self.error = None

    def compose_and_upload(self, contract, signer_signature, owner_signature=None):
        self.calls.append((contract, signer_signature, owner_signature))
        if self.error is not None:
            raise self.error
        return 'https://storage.test/Contract-3f1c9a7e-signed.pdf'


class FakeSagaRepo:

    def __init__(self):
        self.calls = []
        self.error = None

    def __getattr__(self, name):
        if name.startswith('__'):
            raise AttributeError(name)

        def record(*args, **kwargs):
            if self.error is not None:
                raise self.error
            self.calls.append((name, args, kwargs))
        return record

    def statuses(self):
        return [args[1] for name, args, kwargs in self.calls if name == 'update_status']


@pytest.fixture(autouse=True)
def reset_process_state():
    InMemorySigningSessionStore.clear_all()
    SigningSessionRegistry().clear_all()
    yield
    InMemorySigningSessionStore.clear_all()
    SigningSessionRegistry().clear_all()


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def ticker():
    return ManualTicker()


@pytest.fixture
def otp_client():
    return FakeOtpClient()


@pytest.fixture
def uploader():
    return FakeUploader()


@pytest.fixture
def contract_client():
    return FakeContractClient()


@pytest.fixture
def composer():
    return FakeComposer()


@pytest.fixture
def store():
    return InMemorySigningSessionStore(f'test:scope:{CONTRACT_ID}')


@pytest.fixture
def pending_signature(store):
    session = SigningSession(
        contract_id=CONTRACT_ID,
        signer_name='Nguyen Van A',
        signer_email=SIGNER_EMAIL,
        signer_phone='0901234567',
        signature_artifact=SignatureArtifact(kind=SignatureKind.DRAWN, payload=make_png_data_url())
    )
    store.put(session)
    return session


@pytest.fixture
def events():
    return {'ticks': [], 'expired': 0}


@pytest.fixture
def make_orchestrator(otp_client, uploader, contract_client, composer, store, ticker, clock, events):
    def factory(**overrides):
        def on_expire():
            events['expired'] += 1

        kwargs = dict(
            contract_id=CONTRACT_ID,
            otp_client=otp_client,
            uploader=uploader,
            contract_client=contract_client,
            composer=composer,
            store=store,
            ticker=ticker,
            clock=clock,
            on_tick=events['ticks'].append,
            on_expire=on_expire
        )
        kwargs.update(overrides)
        return SigningSagaOrchestrator(**kwargs)
    return factory


@pytest.fixture
def orchestrator(make_orchestrator, pending_signature):
    return make_orchestrator()


class FakeResponse:

    def __init__(self, status_code=200, json_data=None, text=None, content=b''):
        self.status_code = status_code
        self._json = json_data
        self.text = text if text is not None else ('' if json_data is None else str(json_data))
        self.content = content

    def json(self):
        if self._json is None:
            raise ValueError('no json')
        return self._json

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f'{self.status_code} error', response=self)


class FakeHttpSession:
    """requests.Session 대역 - 호출을 기록하고 미리 정한 응답/예외를 돌려준다"""

    def __init__(self):
        self.calls = []
        self.responses = {}
        self.headers = {}

    def respond(self, method, response):
        self.responses[method] = response

    def _handle(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        response = self.responses.get(method, FakeResponse(200, {}))
        if isinstance(response, Exception):
            raise response
        return response

    def get(self, url, **kwargs):
        return self._handle('GET', url, **kwargs)

    def post(self, url, **kwargs):
        return self._handle('POST', url, **kwargs)

    def put(self, url, **kwargs):
        return self._handle('PUT', url, **kwargs)


@pytest.fixture
def http_session():
    return FakeHttpSession()
