import pytest

import app.services.signing_service as signing_service
from app import create_app
from common.cache.signing_session_store import create_session_store
from common.extensions import socketio
from common.scheduler.tasks import sweep_signing_attempts
from common.utils import create_access_token
from tests.conftest import CONTRACT_ID, make_png_data_url

BASE_URL = f'/api/v1/contracts/{CONTRACT_ID}/signing'

#NOTE: autouse 픽스처가 바꿔치기 하기 전의 실제 조립 함수
real_build_orchestrator = signing_service.build_orchestrator


@pytest.fixture(scope='session')
def app():
    return create_app('testing')


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def token(app):
    with app.app_context():
        return create_access_token('user-1', email='token@example.com')


@pytest.fixture
def headers(token):
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(autouse=True)
def fake_collaborators(monkeypatch, make_orchestrator):
    built = []

    def build(scope, contract_id, token=None):
        room = signing_service.signing_room(scope, contract_id)
        orchestrator = make_orchestrator(
            contract_id=contract_id,
            store=create_session_store(scope, contract_id),
            on_tick=lambda remaining: signing_service.emit_countdown(room, remaining),
            on_expire=lambda: signing_service.emit_expired(room)
        )
        built.append((scope, token))
        return orchestrator

    monkeypatch.setattr(signing_service, 'build_orchestrator', build)
    return built


def _save_signature(client, headers, **extra):
    body = {'kind': 'drawn', 'payload': make_png_data_url(), 'signer_email': 'tenant@example.com'}
    body.update(extra)
    return client.post(f'{BASE_URL}/pending-signature', json=body, headers=headers)


def test_health(client):
    response = client.get('/health')

    assert response.status_code == 200
    assert response.get_json()['status'] == 'healthy'


def test_requires_bearer_token(client):
    response = client.post(f'{BASE_URL}/start', json={})

    assert response.status_code == 401
    assert response.get_json()['code'] == 'A002'


def test_full_signing_flow(client, headers, contract_client, composer, fake_collaborators, token):
    assert _save_signature(client, headers).status_code == 200

    response = client.post(f'{BASE_URL}/start', json={}, headers=headers)
    body = response.get_json()
    assert response.status_code == 200
    assert body['state'] == 'otp_pending'
    assert body['remaining_seconds'] == 300
    assert body['resend_available_in'] == 60
    assert fake_collaborators == [('user-1', token)]

    response = client.post(f'{BASE_URL}/verify', json={'code': '12'}, headers=headers)
    assert response.status_code == 400
    assert response.get_json()['code'] == 'O001'

    response = client.post(f'{BASE_URL}/verify', json={'code': '999999'}, headers=headers)
    assert response.status_code == 400
    assert response.get_json()['code'] == 'O002'

    response = client.post(f'{BASE_URL}/resend', headers=headers)
    assert response.status_code == 429
    assert response.get_json()['data'] == {'retry_after_seconds': 60}

    response = client.post(f'{BASE_URL}/verify', json={'code': '100001'}, headers=headers)
    body = response.get_json()
    assert response.status_code == 200
    assert body['state'] == 'done'
    assert body['committed'] is True
    assert body['pdf_attached'] is True
    assert contract_client.attach_calls == [(CONTRACT_ID, body['pdf_url'])]

    #NOTE: 종료된 시도는 결과 응답 후 레지스트리에서 빠진다
    response = client.get(BASE_URL, headers=headers)
    assert response.status_code == 404
    assert signing_service.registry.get_size() == 0


def test_start_rejects_already_signed_contract(client, headers, contract_client):
    contract_client.contract['tenantSignature'] = 'https://storage.test/old.png'
    _save_signature(client, headers)

    response = client.post(f'{BASE_URL}/start', json={}, headers=headers)

    assert response.status_code == 409
    assert response.get_json()['code'] == 'K002'


def test_start_prefills_email_from_contract(client, headers, otp_client):
    _save_signature(client, headers, signer_email=None)

    response = client.post(f'{BASE_URL}/start', json={}, headers=headers)

    assert response.status_code == 200
    assert otp_client.issue_calls == [(CONTRACT_ID, 'tenant@example.com')]


def test_pending_signature_rejects_non_image_payload(client, headers):
    response = _save_signature(client, headers, payload='data:text/plain;base64,aGVsbG8=')

    assert response.status_code == 400
    assert response.get_json()['code'] == 'S010'


def test_status_without_attempt_is_not_found(client, headers):
    response = client.get(BASE_URL, headers=headers)

    assert response.status_code == 404
    assert response.get_json()['code'] == 'S001'


def test_tabs_are_isolated_by_client_session(client, headers):
    tab_a = dict(headers, **{'X-Client-Session-Id': 'tab-a'})
    _save_signature(client, tab_a)
    assert client.post(f'{BASE_URL}/start', json={}, headers=tab_a).status_code == 200

    assert client.get(BASE_URL, headers=tab_a).get_json()['state'] == 'otp_pending'
    assert client.get(BASE_URL, headers=headers).status_code == 404


def test_cancel_before_and_after_start(client, headers):
    response = client.post(f'{BASE_URL}/cancel', headers=headers)
    assert response.status_code == 200
    assert response.get_json() == {'contract_id': CONTRACT_ID, 'state': 'aborted', 'cancelled': True}

    _save_signature(client, headers)
    client.post(f'{BASE_URL}/start', json={}, headers=headers)
    response = client.post(f'{BASE_URL}/cancel', headers=headers)
    assert response.get_json()['state'] == 'aborted'

    response = client.post(f'{BASE_URL}/verify', json={'code': '100001'}, headers=headers)
    assert response.status_code == 404
    assert response.get_json()['code'] == 'S001'


def test_countdown_pushed_to_joined_socket(app, client, headers, token, ticker, clock):
    socket_client = socketio.test_client(app, namespace='/signing')
    assert socket_client.get_received('/signing')[0]['name'] == 'connected'

    _save_signature(client, headers)
    client.post(f'{BASE_URL}/start', json={}, headers=headers)

    socket_client.emit('join_signing', {'contract_id': CONTRACT_ID, 'token': token}, namespace='/signing')
    joined = socket_client.get_received('/signing')
    assert joined[0]['name'] == 'joined'
    assert joined[0]['args'][0]['state'] == 'otp_pending'

    clock.advance(5)
    ticker.fire()
    received = socket_client.get_received('/signing')
    assert received[0]['name'] == 'otp_countdown'
    assert received[0]['args'][0] == {'remaining_seconds': 295}

    socket_client.disconnect(namespace='/signing')


def test_socket_join_rejects_bad_token(app):
    socket_client = socketio.test_client(app, namespace='/signing')
    socket_client.get_received('/signing')

    socket_client.emit('join_signing', {'contract_id': CONTRACT_ID, 'token': 'garbage'}, namespace='/signing')

    received = socket_client.get_received('/signing')
    assert received[0]['name'] == 'error'
    assert received[0]['args'][0]['code'] == 'A002'


def test_cancelled_attempts_do_not_accumulate(client, headers):
    for index in range(50):
        tab = dict(headers, **{'X-Client-Session-Id': f'tab-{index}'})
        _save_signature(client, tab)
        assert client.post(f'{BASE_URL}/start', json={}, headers=tab).status_code == 200
        assert client.post(f'{BASE_URL}/cancel', headers=tab).get_json()['state'] == 'aborted'

    assert signing_service.registry.get_size() == 0


def test_abandoned_attempt_swept_after_idle_timeout(client, headers, clock, ticker):
    _save_signature(client, headers)
    client.post(f'{BASE_URL}/start', json={}, headers=headers)

    clock.advance(600)
    assert sweep_signing_attempts(1800, now=clock()) == 0

    clock.advance(1200)
    assert sweep_signing_attempts(1800, now=clock()) == 1
    assert signing_service.registry.get_size() == 0
    assert ticker.jobs == {}
    assert client.get(BASE_URL, headers=headers).status_code == 404


def test_pdf_composer_session_carries_no_user_token(app):
    with app.app_context():
        orchestrator = real_build_orchestrator('user-1', CONTRACT_ID, token='user-token')

    assert orchestrator.uploader.session.headers['Authorization'] == 'Bearer user-token'
    assert orchestrator.contract_client.session.headers['Authorization'] == 'Bearer user-token'
    assert 'Authorization' not in orchestrator.composer.session.headers
    orchestrator.dispose()
