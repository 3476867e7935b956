import os

from celery import Celery

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "carhire.settings.dev")
app = Celery("carhire")
app.config_from_object("django.conf:settings", namespace="CELERY")
app.autodiscover_tasks()
