from functools import wraps
from flask import request, g

from common.enum.error_code import APIError
from common.exception.exceptions import BusinessError
from common.utils import decode_token


def login_required(f):
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get('Authorization')

        if not auth_header or not auth_header.startswith("Bearer "):
            raise BusinessError(APIError.AUTH_INVALID_TOKEN)

        token = auth_header.split(" ")[1]
        payload = decode_token(token)

        if payload.get('type', 'access') != 'access':
            raise BusinessError(APIError.AUTH_INVALID_TOKEN)

        g.user_id = payload['sub']
        g.email = payload.get('email')
        #NOTE: 협력 서비스 호출 시 그대로 전달
        g.access_token = token

        return f(*args, **kwargs)
    return decorated_function
