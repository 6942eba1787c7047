"""
WSGI entry point for Reverse Logistics.
"""

import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'reverse_logistics.settings')

application = get_wsgi_application()
