from flask import request
from flask_socketio import emit, join_room, leave_room

from common.extensions import socketio
from common.exception.exceptions import BusinessError
from common.utils import decode_token
from common.utils.logging_utils import get_logger
from app.services.signing_service import SIGNING_NAMESPACE, build_scope, registry, signing_room

logger = get_logger('signing_socket')


@socketio.on('connect', namespace=SIGNING_NAMESPACE)
def handle_connect():
    logger.info(f"서명 소켓 연결됨: {request.sid}")
    emit('connected', {'status': 'success', 'message': 'Connected to signing server'})


@socketio.on('join_signing', namespace=SIGNING_NAMESPACE)
def handle_join_signing(data):
    """서명 화면 입장 - 카운트다운 이벤트를 받을 룸에 참여"""
    data = data or {}
    contract_id = data.get('contract_id')
    token = data.get('token')

    if not contract_id or not token:
        emit('error', {'status': 'error', 'message': 'Missing contract_id or token'})
        return

    try:
        payload = decode_token(token)
    except BusinessError as e:
        emit('error', {'status': 'error', 'code': e.error_enum.code, 'message': e.message})
        return

    scope = build_scope(payload['sub'], data.get('client_session_id'))
    join_room(signing_room(scope, contract_id))

    attempt = registry.get(scope, contract_id)
    remaining = attempt.remaining_seconds() if attempt is not None else 0
    state = attempt.state.value if attempt is not None else None

    logger.info(f"서명 룸 참여 - contract: {contract_id}, sid: {request.sid}")
    emit('joined', {'status': 'success', 'state': state, 'remaining_seconds': remaining})


@socketio.on('leave_signing', namespace=SIGNING_NAMESPACE)
def handle_leave_signing(data):
    data = data or {}
    contract_id = data.get('contract_id')
    token = data.get('token')
    if not contract_id or not token:
        return

    try:
        payload = decode_token(token)
    except BusinessError:
        return

    leave_room(signing_room(build_scope(payload['sub'], data.get('client_session_id')), contract_id))


@socketio.on('disconnect', namespace=SIGNING_NAMESPACE)
def handle_disconnect(*args):
    #NOTE: 연결이 끊겨도 서명 시도는 유지 (새로고침 후 재입장 가능)
    logger.info(f"서명 소켓 연결 해제됨: {request.sid}")
