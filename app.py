"""
snow-relay launcher
-------------------
Exposes the relay's WSGI application as ``app:app`` and runs it either with
Flask's development server or under Gunicorn.

Environment:
- PORT           listen port (default 3000)
- USE_GUNICORN   1/true/yes to run under Gunicorn
- WORKERS        Gunicorn worker count (default: CPU count)
- LOG_LEVEL      logging level for the relay and Gunicorn
- ACCESS_LOGFILE / ERROR_LOGFILE  Gunicorn log targets (default stdout)
"""

import logging
import multiprocessing
import os
import sys

from snowrelay import config
from snowrelay.server import app

logging.basicConfig(
    level=config.LOG_LEVEL.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

# ---------------------------------------------------------------------------
# Entrypoint: run with Flask dev server or Gunicorn
# ---------------------------------------------------------------------------
if __name__ == "__main__":
    use_gunicorn = os.environ.get("USE_GUNICORN", "").lower() in ("1", "true", "yes")

    if use_gunicorn:
        # Run under Gunicorn
        from gunicorn.app.wsgiapp import run

        workers = int(os.environ.get("WORKERS", multiprocessing.cpu_count()))
        sys.argv = [
            "gunicorn",
            "-w", str(workers),
            "-b", f"0.0.0.0:{config.PORT}",
            "--timeout", str(int(config.READ_TIMEOUT) + 30),
            "--log-level", config.LOG_LEVEL,
            "--access-logfile", os.environ.get("ACCESS_LOGFILE", "-"),
            "--error-logfile", os.environ.get("ERROR_LOGFILE", "-"),
            "--capture-output",
            "app:app",
        ]
        run()
    else:
        # Run with Flask's built-in dev server
        app.run(host="0.0.0.0", port=config.PORT, debug=False, threaded=True)
