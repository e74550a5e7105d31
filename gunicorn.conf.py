"""Gunicorn configuration for the medstock stock count service."""
import os

bind = os.getenv("GUNICORN_BIND", "0.0.0.0:5000")

# Reconciliation holds row locks for the length of one request; keep the pool small.
workers = int(os.getenv("GUNICORN_WORKERS", "2"))
timeout = int(os.getenv("GUNICORN_TIMEOUT", "60"))

accesslog = os.getenv("GUNICORN_ACCESS_LOGFILE", "-")
errorlog = os.getenv("GUNICORN_ERROR_LOGFILE", "-")
loglevel = os.getenv("LOG_LEVEL", "info").lower()

forwarded_allow_ips = os.getenv("GUNICORN_FORWARDED_ALLOW_IPS", "*")
