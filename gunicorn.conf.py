import os

bind = os.getenv("GUNICORN_BIND", "0.0.0.0:8000")
worker_class = "uvicorn.workers.UvicornWorker"

# Folder find-or-create is serialized per organization inside one process only;
# keep the worker count small so concurrent exports rarely race across processes.
workers = int(os.getenv("GUNICORN_WORKERS", "2"))
threads = int(os.getenv("GUNICORN_THREADS", "4"))

# One export chains several sequential Drive calls, each bounded by HTTP_TIMEOUT_SECONDS
timeout = int(os.getenv("GUNICORN_TIMEOUT", str(int(os.getenv("HTTP_TIMEOUT_SECONDS", "30")) * 8)))
graceful_timeout = int(os.getenv("GUNICORN_GRACEFUL_TIMEOUT", "60"))
keepalive = int(os.getenv("GUNICORN_KEEPALIVE", "5"))
max_requests = int(os.getenv("GUNICORN_MAX_REQUESTS", "500"))
max_requests_jitter = int(os.getenv("GUNICORN_MAX_REQUESTS_JITTER", "50"))
loglevel = os.getenv("GUNICORN_LOG_LEVEL", "info")
accesslog = "-"
errorlog = "-"
forwarded_allow_ips = "*"

# JSON logs from the toolboard_drive logger go to stdout
capture_output = True


def on_exit(server):
    server.log.info("Drive export service shutting down")


def worker_abort(server, worker):
    # An aborted worker may leave a _temp_ document behind on Drive
    server.log.warning("Worker aborted (timeout); an in-flight export may not have cleaned up", extra={"pid": worker.pid})
