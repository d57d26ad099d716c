"""
Utils package
유틸리티 함수들을 모아둔 패키지

- jwt_utils: JWT 토큰 생성 및 검증
- email_utils: OTP 메일 발송
- logging_utils: 로거 설정
"""

from common.utils.jwt_utils import (
    decode_token,
    create_access_token
)

__all__ = [
    'decode_token',
    'create_access_token'
]
