"""
WSGI / Flask-Migrate entry point.

Usage:
    flask --app wsgi db upgrade
    flask --app wsgi run-job escalation_sweep
    gunicorn wsgi:app
"""

from compliance_desk import create_app

app = create_app()
