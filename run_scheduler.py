"""
run_scheduler.py
----------------
Long-running worker: builds the app, starts the three lifecycle sweeps and
blocks until interrupted. Run exactly one instance; the sweeps assume a
single writer.

Usage:
    $ python run_scheduler.py
"""

import logging
import os
import signal
import threading

from rental_lifecycle import create_app


def main():
    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    app = create_app({"SCHEDULER_AUTOSTART": False})
    scheduler = app.extensions["lifecycle_scheduler"]

    done = threading.Event()
    signal.signal(signal.SIGTERM, lambda *_: done.set())

    scheduler.start()
    try:
        while not done.wait(1.0):
            pass
    except KeyboardInterrupt:
        pass
    finally:
        scheduler.stop(wait=True, timeout=60)


if __name__ == "__main__":
    main()
