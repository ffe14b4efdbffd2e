"""Irrigation worker that stays alive until SIGINT/SIGTERM."""

import sys

if sys.platform == "win32":
    sys.stdout.reconfigure(encoding="utf-8")

from app.workers.worker_cli import main

if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
