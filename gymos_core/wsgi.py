"""
WSGI config for the GymOS API.
"""

import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'gymos_core.settings')

application = get_wsgi_application()
