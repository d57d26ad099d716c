"""
Services package
비즈니스 로직을 처리하는 서비스 레이어

- signing_service: 계약 서명 사가 진입점 (시도 생성/조회, 단계 실행)
"""

__all__ = []
