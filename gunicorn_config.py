"""
Gunicorn configuration file for the VinFast Dashboard gateway.

Requests spend nearly all their time waiting on the vendor API, so workers
are threaded and the worker timeout leaves room for a full vendor timeout.
"""

import multiprocessing
import os

# Server Socket
bind = f"0.0.0.0:{os.environ.get('PORT', 8000)}"
backlog = 2048

# Worker Processes
workers = int(os.environ.get('GUNICORN_WORKERS', multiprocessing.cpu_count() + 1))
worker_class = 'gthread'
threads = int(os.environ.get('GUNICORN_THREADS', 8))
max_requests = 1000
max_requests_jitter = 50
timeout = int(os.environ.get('VINFAST_REQUEST_TIMEOUT', 30)) + 15
keepalive = 5

# Logging
accesslog = '-'  # Log to stdout
errorlog = '-'   # Log to stderr
loglevel = os.environ.get('LOG_LEVEL', 'info').lower()
# No query strings or cookies in access logs, the proxy path is enough
access_log_format = '%(h)s %(t)s "%(m)s %(U)s" %(s)s %(b)s %(D)s'

# Process Naming
proc_name = 'vfdashboard_gateway'

# Server Mechanics
daemon = False
umask = 0

# Development/Production mode
reload = os.environ.get('FLASK_ENV') == 'development'


def on_starting(server):
    """Called just before the master process is initialized."""
    server.log.info("Starting Gunicorn server for the VinFast Dashboard gateway")


def when_ready(server):
    """Called just after the server is started."""
    server.log.info("Gateway ready, spawning %s workers x %s threads", workers, threads)


def worker_abort(worker):
    """Called when a worker received the SIGABRT signal (usually a vendor call outliving the timeout)."""
    worker.log.warning("Worker aborted, a vendor call probably exceeded the timeout")
