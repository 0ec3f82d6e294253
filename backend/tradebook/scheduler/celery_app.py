from celery import Celery

from tradebook.core.config import settings

app = Celery("tradebook")
app.conf.broker_url = settings.CELERY_BROKER_URL
app.conf.result_backend = settings.CELERY_RESULT_BACKEND
app.conf.timezone = settings.CELERY_TIMEZONE
app.conf.enable_utc = False
app.conf.imports = ("tradebook.tasks.holdings",)
