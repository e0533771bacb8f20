from celery import Celery
from config import config

BROKER_URL = config.celery_broker_url
BACKEND_URL = config.celery_backend_url

celery_app = Celery(
    "experiment_analysis",
    broker=BROKER_URL,
    backend=BACKEND_URL,
    # This ensures the tasks are loaded when the worker starts
    include=["celery_tasks.event_tasks"]
)

celery_app.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,

    # Redeliver events whose worker died mid-task, already recorded event ids are skipped
    task_acks_late=True,

    # === Producer-Side (Sending Message) Retry Settings ===
    # Retries publishing when the client cannot connect to the broker.
    task_publish_retry=True,
    task_publish_retry_policy={
        'max_retries': 10,       # Maximum number of retries before giving up
        'interval_start': 0.5,   # Initial wait time in seconds
        'interval_step': 0.5,    # Amount to increase wait time by
        'interval_max': 5,       # Maximum wait time
    },
)

celery_app.conf.task_routes = {
    'celery_tasks.event_tasks.*': {'queue': 'events'},
}
