#!/usr/bin/env python3
"""Development scripts for the Flight-Group Booking Platform."""

import asyncio
import json
import subprocess
import sys


def start():
    """Start the development server."""
    subprocess.run([
        "uvicorn",
        "flightgroup_booking_platform.main:app",
        "--host", "0.0.0.0",
        "--port", "3000",
        "--reload"
    ])


def worker():
    """Start a Celery worker for notifications and expiry sweeps."""
    subprocess.run([
        "celery", "-A", "flightgroup_booking_platform.tasks.celery_app",
        "worker", "--loglevel=info"
    ])


def beat():
    """Start Celery beat, which schedules the expiry sweep."""
    subprocess.run([
        "celery", "-A", "flightgroup_booking_platform.tasks.celery_app",
        "beat", "--loglevel=info"
    ])


def sweep():
    """Run one expiry sweep in-process and print the report."""
    from flightgroup_booking_platform.tasks.booking_tasks import run_expiry_sweep

    report = asyncio.run(run_expiry_sweep())
    print(json.dumps(report, indent=2))


def migrate():
    """Apply database migrations."""
    subprocess.run(["alembic", "upgrade", "head"])


def test():
    """Run the test suite."""
    sys.exit(subprocess.run(["pytest", *sys.argv[2:]]).returncode)


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print("Usage: python scripts.py <command>")
        print("Commands: start, worker, beat, sweep, migrate, test")
        sys.exit(1)

    command = sys.argv[1].replace("-", "_")
    if hasattr(sys.modules[__name__], command):
        getattr(sys.modules[__name__], command)()
    else:
        print(f"Unknown command: {sys.argv[1]}")
        sys.exit(1)
