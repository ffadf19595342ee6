import os
from celery import Celery
from celery.schedules import crontab
from dotenv import load_dotenv

load_dotenv()

broker = os.getenv("REDIS_URL", "redis://localhost:6379/0")
backend = broker

celery = Celery("fitcheck_workers", broker=broker, backend=backend, include=["workers.tasks"])
celery.conf.task_routes = {
    "tasks.analyze_outfit": {"queue": "images"},
    "tasks.fail_stale_analyses": {"queue": "maintenance"},
}

# Beat schedule for periodic tasks
celery.conf.beat_schedule = {
    "fail-stale-analyses": {
        "task": "tasks.fail_stale_analyses",
        "schedule": crontab(minute="*/10"),  # every 10 minutes
    },
}
