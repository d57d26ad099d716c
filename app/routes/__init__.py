"""
Routes package
Flask Blueprint들을 관리하는 패키지
"""

from app.routes.signing import signing_blueprint
from app.routes.base import base_blueprint

__all__ = [
    'signing_blueprint',
    'base_blueprint'
]
