"""
Celery Configuration for Reverse Logistics

HOW IT WORKS:
1. Celery beat wakes up on the schedule in settings.CELERY_BEAT_SCHEDULE
2. The inspection SLA escalation task is pushed to the Redis queue
3. A Celery worker picks it up and escalates overdue returns
4. Partner webhooks never wait on any of this
"""

import os
from celery import Celery

# Set the default Django settings module
os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'reverse_logistics.settings')

# Create the Celery app
app = Celery('reverse_logistics')

# Load config from Django settings (all settings starting with CELERY_)
app.config_from_object('django.conf:settings', namespace='CELERY')

# Auto-discover tasks.py in all installed apps
app.autodiscover_tasks()
