"""Gunicorn configuration. Run with: gunicorn -c gunicorn_config.py 'app:build_app()'"""
import os
import sys

bind = f"0.0.0.0:{os.getenv('PORT', '8080')}"
# The store lives in process memory; each extra worker would hold its own copy.
workers = 1
threads = 4
timeout = 120
worker_class = "gthread"
preload_app = False


def post_worker_init(worker):
    """Report what the worker's store holds once the app is loaded."""
    app = getattr(worker, "wsgi", None)
    if app is None or not hasattr(app, 'config'):
        print(f"[Worker {worker.pid}] WARNING: App or config not found", file=sys.stderr, flush=True)
        return
    cluster = app.config.get('cluster')
    if cluster is None:
        print(f"[Worker {worker.pid}] WARNING: No cluster found in app.config", file=sys.stderr, flush=True)
        return
    print(f"[Worker {worker.pid}] Cluster state ready with {len(cluster)} nodes", file=sys.stderr, flush=True)
