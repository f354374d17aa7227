"""
Gunicorn configuration for FactLedger production deployment.

Usage:
    gunicorn app.main:app -c gunicorn.conf.py
"""

import os

# Bind to all interfaces on port 8000
bind = os.getenv("BIND", "0.0.0.0:8000")

# Single worker: rate-limit windows and budget reservations live in process
# memory, so a second worker would get its own independent counters.
workers = 1

# Use Uvicorn's ASGI worker for FastAPI
worker_class = "uvicorn.workers.UvicornWorker"

# Request timeout (seconds); a run waits for every generator call to settle
timeout = int(os.getenv("GUNICORN_TIMEOUT", "180"))

# Keep-alive connections (seconds)
keepalive = 5

# Logging
accesslog = "-"  # stdout
errorlog = "-"   # stderr
loglevel = os.getenv("LOG_LEVEL", "info")
