"""Gunicorn configuration for the ExamForge preview player."""

wsgi_app = "examforge.web.app:create_app()"
bind = "127.0.0.1:8000"
workers = 1  # Attempts are held in process memory
timeout = 60
accesslog = "-"
errorlog = "-"
loglevel = "info"
