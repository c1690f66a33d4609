# celery_worker.py
from celery.schedules import crontab

from app import create_app
from celery_config import create_celery_app

celery = create_celery_app(__name__)

# Tasks run inside this app's context
flask_app = create_app()


class ContextTask(celery.Task):
    def __call__(self, *args, **kwargs):
        with flask_app.app_context():
            return self.run(*args, **kwargs)


celery.Task = ContextTask

celery.conf.beat_schedule = {
    'correlation-retry-processing': {
        'task': 'tasks.webhook_retry_tasks.process_correlation_retries',
        # Every 5 minutes
        'schedule': 300.0,
        'kwargs': {'limit': 50}
    },
    'correlation-failure-alerts': {
        'task': 'tasks.webhook_retry_tasks.correlation_failure_alerts',
        'schedule': 3600.0,
    },
    'cleanup-old-failed-webhooks': {
        'task': 'tasks.webhook_retry_tasks.cleanup_old_failed_webhooks',
        # Sundays 04:00 UTC
        'schedule': crontab(hour=4, minute=0, day_of_week=0),
        'kwargs': {'days_old': 30}
    },
}
celery.conf.timezone = 'UTC'

# Register tasks once the Flask app exists
with flask_app.app_context():
    import tasks.correlation_tasks  # noqa: E402,F401
    import tasks.webhook_retry_tasks  # noqa: E402,F401
