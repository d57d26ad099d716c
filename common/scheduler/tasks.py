"""
스케줄 작업 정의 및 등록
- 오래된 서명 사가 감사 로그 정리
- 종료됐거나 방치된 서명 시도 정리
"""

from datetime import datetime, timedelta
from typing import Optional

from pymongo.errors import PyMongoError

import common.extensions as extensions
from common.extensions import scheduler
from app.models.mongodb.saga_transaction_log import SigningSagaLogRepository
from common.saga.countdown import utcnow
from common.utils.logging_utils import get_logger

logger = get_logger('scheduler_tasks')


def register_scheduled_tasks():
    """
    모든 스케줄 작업을 등록하는 함수
    """
    # 매일 새벽 4시에 종료된 서명 사가 로그 정리
    scheduler.add_job(
        id='purge_signing_saga_logs',
        func=execute_purge_saga_logs_job,
        trigger='cron',
        hour=4,
        minute=0,
        misfire_grace_time=3600,
        replace_existing=True
    )

    # 5분마다 종료됐거나 방치된 서명 시도를 레지스트리에서 정리
    scheduler.add_job(
        id='sweep_signing_attempts',
        func=execute_sweep_signing_attempts_job,
        trigger='interval',
        minutes=5,
        misfire_grace_time=60,
        replace_existing=True
    )

    logger.info("모든 스케줄 작업이 등록되었습니다.")
    logger.info("서명 사가 로그 정리: 매일 04:00")
    logger.info("서명 시도 정리: 5분마다")


def purge_saga_logs(db, retention_days: int) -> int:
    repo = SigningSagaLogRepository(db)
    deleted = repo.delete_old_logs(days=retention_days)
    logger.info(f"서명 사가 로그 {deleted}건 삭제 (보관 기간 {retention_days}일)")
    return deleted


def execute_purge_saga_logs_job():
    """서명 사가 로그 정리 Job 실행 (Flask 앱 컨텍스트 내에서)"""
    with scheduler.app.app_context():
        if extensions.mongo_db is None:
            logger.warning("MongoDB 미연결, 서명 사가 로그 정리를 건너뜁니다")
            return
        try:
            retention_days = scheduler.app.config.get('SAGA_LOG_RETENTION_DAYS', 90)
            purge_saga_logs(extensions.mongo_db, retention_days)
        except PyMongoError as e:
            logger.error(f"서명 사가 로그 정리 작업 실패: {str(e)}", exc_info=True)


def sweep_signing_attempts(idle_seconds: int, now: Optional[datetime] = None) -> int:
    from app.services.signing_service import registry

    removed = registry.sweep(now or utcnow(), timedelta(seconds=idle_seconds))
    if removed:
        logger.info(f"서명 시도 {removed}건 정리 (남은 시도 {registry.get_size()}건)")
    return removed


def execute_sweep_signing_attempts_job():
    """서명 시도 정리 Job 실행 (Flask 앱 컨텍스트 내에서)"""
    with scheduler.app.app_context():
        idle_seconds = scheduler.app.config.get('SIGNING_SESSION_TTL_SECONDS', 1800)
        sweep_signing_attempts(idle_seconds)
