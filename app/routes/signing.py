from flask import g, request
from flask_smorest import Blueprint

from app.schemas.signing import (
    SavePendingSignatureRequestSchema, PendingSignatureResponseSchema,
    StartSigningRequestSchema, VerifyOtpRequestSchema,
    SigningStatusResponseSchema, SigningOutcomeResponseSchema,
    CancelSigningResponseSchema
)
from app.schemas.common_schema import ErrorResponseSchema
from app.services.signing_service import SigningService, build_scope
from common.decorator.auth_decorators import login_required

signing_blueprint = Blueprint(
    'signing',
    __name__,
    url_prefix='/api/v1/contracts/<string:contract_id>/signing',
    description='계약 전자 서명 (OTP 인증 사가) API'
)


def _scope() -> str:
    return build_scope(g.user_id, request.headers.get('X-Client-Session-Id'))


@signing_blueprint.route('/pending-signature', methods=['POST'])
@login_required
@signing_blueprint.arguments(SavePendingSignatureRequestSchema)
@signing_blueprint.response(200, PendingSignatureResponseSchema)
@signing_blueprint.doc(security=[{"BearerAuth": []}])
def save_pending_signature(data, contract_id):
    return SigningService.save_pending_signature(_scope(), contract_id, data)


@signing_blueprint.route('/start', methods=['POST'])
@login_required
@signing_blueprint.arguments(StartSigningRequestSchema)
@signing_blueprint.response(200, SigningStatusResponseSchema)
@signing_blueprint.alt_response(502, schema=ErrorResponseSchema)
@signing_blueprint.doc(security=[{"BearerAuth": []}])
def start_signing(data, contract_id):
    return SigningService.start_signing(_scope(), contract_id, g.access_token, data, default_email=g.email)


@signing_blueprint.route('/resend', methods=['POST'])
@login_required
@signing_blueprint.response(200, SigningStatusResponseSchema)
@signing_blueprint.doc(security=[{"BearerAuth": []}])
def resend_otp(contract_id):
    return SigningService.resend(_scope(), contract_id)


@signing_blueprint.route('/verify', methods=['POST'])
@login_required
@signing_blueprint.arguments(VerifyOtpRequestSchema)
@signing_blueprint.response(200, SigningOutcomeResponseSchema)
@signing_blueprint.alt_response(400, schema=ErrorResponseSchema)
@signing_blueprint.alt_response(504, schema=ErrorResponseSchema)
@signing_blueprint.doc(security=[{"BearerAuth": []}])
def verify_otp(data, contract_id):
    return SigningService.verify(_scope(), contract_id, data['code'])


@signing_blueprint.route('/reconcile', methods=['POST'])
@login_required
@signing_blueprint.response(200, SigningOutcomeResponseSchema)
@signing_blueprint.doc(security=[{"BearerAuth": []}])
def reconcile_signing(contract_id):
    return SigningService.reconcile(_scope(), contract_id)


@signing_blueprint.route('/commit', methods=['POST'])
@login_required
@signing_blueprint.response(200, SigningOutcomeResponseSchema)
@signing_blueprint.alt_response(504, schema=ErrorResponseSchema)
@signing_blueprint.doc(security=[{"BearerAuth": []}])
def commit_signing(contract_id):
    return SigningService.commit(_scope(), contract_id)


@signing_blueprint.route('/cancel', methods=['POST'])
@login_required
@signing_blueprint.response(200, CancelSigningResponseSchema)
@signing_blueprint.doc(security=[{"BearerAuth": []}])
def cancel_signing(contract_id):
    return SigningService.cancel(_scope(), contract_id)


@signing_blueprint.route('', methods=['GET'])
@login_required
@signing_blueprint.response(200, SigningStatusResponseSchema)
@signing_blueprint.doc(security=[{"BearerAuth": []}])
def get_signing_status(contract_id):
    return SigningService.get_status(_scope(), contract_id)
