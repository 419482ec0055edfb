"""
WSGI entry point and Flask CLI target.

Usage:
    gunicorn wsgi:app
    flask --app wsgi db upgrade
    flask --app wsgi seed-default-stages --tenant grace-church
    flask --app wsgi advance-time-in-stage
"""

from app import create_app

app = create_app()
