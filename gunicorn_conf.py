"""Gunicorn configuration for production deployment.

Serves ``deep_research.server:app``. Cloud Run provides a PORT environment
variable; everything else can be tuned through GUNICORN_* variables.
"""

import multiprocessing
import os

# Bind configuration
port = os.environ.get("PORT", "8080")
bind = f"0.0.0.0:{port}"

# Worker configuration
# Runs are I/O bound and hold one event loop each; a couple of workers is enough
workers = int(os.environ.get("GUNICORN_WORKERS", min(2, multiprocessing.cpu_count())))
worker_class = "uvicorn.workers.UvicornWorker"
wsgi_app = "deep_research.server:app"

# Timeout configuration
# A 100k-word report with hundreds of sub-queries runs for tens of minutes;
# must stay above RESEARCH_STREAM_MAX_DURATION_SECONDS
timeout = int(os.environ.get("GUNICORN_TIMEOUT", "3900"))
graceful_timeout = int(os.environ.get("GUNICORN_GRACEFUL_TIMEOUT", "60"))
keepalive = int(os.environ.get("GUNICORN_KEEPALIVE", "5"))

# Logging configuration
loglevel = os.environ.get("GUNICORN_LOG_LEVEL", "info")
accesslog = "-"
errorlog = "-"

preload_app = True
backlog = 2048

# Recycle workers between long runs
max_requests = int(os.environ.get("GUNICORN_MAX_REQUESTS", "200"))
max_requests_jitter = int(os.environ.get("GUNICORN_MAX_REQUESTS_JITTER", "20"))
