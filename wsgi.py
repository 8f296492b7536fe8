"""
WSGI entry point (gunicorn wsgi:app) and Flask CLI target.

Usage:
    flask --app wsgi db init      # once, creates migrations/
    flask --app wsgi db migrate
    flask --app wsgi db upgrade
    flask --app wsgi seed-demo
    gunicorn wsgi:app
"""

from app import create_app

app = create_app()
