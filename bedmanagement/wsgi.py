"""
WSGI config for the bed management project.

It exposes the WSGI callable as a module-level variable named ``application``.
WebSocket refresh broadcasts need the ASGI entry point instead.
"""
import os

from django.core.wsgi import get_wsgi_application  # type: ignore

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'bedmanagement.settings')

application = get_wsgi_application()
