from flask import jsonify
from requests import RequestException
from werkzeug.exceptions import HTTPException

from common.enum.error_code import APIError
from common.exception.exceptions import BusinessError, RecoveryAction
from common.utils.logging_utils import get_logger

logger = get_logger('error_handler')


def register_error_handlers(app):
    @app.errorhandler(BusinessError)
    def handle_business_error(e):
        return jsonify({
            "result": "fail",
            "message": e.message,
            "code": e.error_enum.code,
            "action": e.action.value,
            "data": e.data
        }), e.error_enum.status

    @app.errorhandler(RequestException)
    def handle_external_error(e):
        logger.error(f"외부 서비스 호출 실패: {e}")
        return jsonify({
            "result": "fail",
            "message": APIError.EXTERNAL_SERVICE_ERROR.message,
            "code": APIError.EXTERNAL_SERVICE_ERROR.code,
            "action": RecoveryAction.RETRY_STEP.value,
            "data": None
        }), APIError.EXTERNAL_SERVICE_ERROR.status

    @app.errorhandler(Exception)
    def handle_internal_error(e):
        #NOTE: 404, 405, 422(스키마 검증) 등은 Flask/flask-smorest 기본 응답을 그대로 사용
        if isinstance(e, HTTPException):
            return e
        logger.exception(f"처리되지 않은 예외: {e}")
        return jsonify({
            "result": "fail",
            "message": APIError.INTERNAL_SERVER_ERROR.message,
            "code": APIError.INTERNAL_SERVER_ERROR.code,
            "action": RecoveryAction.NONE.value,
            "data": None
        }), 500
