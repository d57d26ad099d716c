from datetime import datetime, timezone

from flask_smorest import Blueprint

import common.extensions as extensions

base_blueprint = Blueprint(
    'base',
    __name__,
    url_prefix='/',
    description='기본 상태 확인 엔드포인트'
)

@base_blueprint.route('health', methods = ['GET'])
def health_check():
    return {
        "status": "healthy",
        "service": "ezstay-signing",
        "redis": extensions.redis_client is not None,
        "mongo": extensions.mongo_db is not None,
        "time": datetime.now(timezone.utc).isoformat()
    }
