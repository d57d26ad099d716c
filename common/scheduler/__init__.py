"""
Scheduler 초기화 및 설정
APScheduler로 OTP 카운트다운 틱과 감사 로그 정리 작업을 실행
"""
from flask import Flask
from common.extensions import scheduler


def init_scheduler(app: Flask):
    app.config.setdefault('SCHEDULER_API_ENABLED', False)
    app.config.setdefault('SCHEDULER_TIMEZONE', 'Asia/Ho_Chi_Minh')
    #NOTE: 카운트다운 틱이 밀리면 한 번만 실행하고 건너뛴다 (남은 시간은 만료 시각에서 다시 계산)
    app.config.setdefault('SCHEDULER_JOB_DEFAULTS', {
        'coalesce': True,
        'max_instances': 1,
        'misfire_grace_time': 1
    })

    scheduler.init_app(app)

    from common.scheduler.tasks import register_scheduled_tasks
    register_scheduled_tasks()

    if not scheduler.running:
        scheduler.start()


__all__ = ['init_scheduler']
