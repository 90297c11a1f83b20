#!/usr/bin/env python3
"""CLI entry point for the supermarket scraper and taxonomy tools."""

import asyncio
import argparse
import json
import logging
import subprocess
import sys
import time
from pathlib import Path

from .db import CatalogDatabase
from .errors import GondolaError
from .models import JobType, LabelKind
from .scrapers import SCRAPERS, ensure_supported, list_scrapers, supports


def run_serve() -> int:
    """Run both webserver and worker with auto-restart on crash."""
    import signal
    import threading

    processes: dict[str, subprocess.Popen] = {}
    shutdown_event = threading.Event()

    def start_webserver() -> subprocess.Popen:
        """Start the uvicorn webserver."""
        return subprocess.Popen(
            [
                sys.executable, "-m", "uvicorn",
                "gondola.webapp.app:app",
                "--host", "0.0.0.0",
                "--port", "8011",
            ],
            cwd=Path(__file__).parent.parent,
        )

    def start_worker() -> subprocess.Popen:
        """Start the background worker."""
        return subprocess.Popen(
            [sys.executable, "-m", "gondola.cli", "--worker"],
            cwd=Path(__file__).parent.parent,
        )

    def monitor_process(name: str, starter: callable) -> None:
        """Monitor a process and restart it on crash."""
        while not shutdown_event.is_set():
            proc = processes.get(name)
            if proc is None or proc.poll() is not None:
                if proc is not None:
                    print(f"[{name}] Process exited with code {proc.returncode}, restarting in 2s...")
                    time.sleep(2)  # Brief delay before restart to release resources
                else:
                    print(f"[{name}] Starting...")
                processes[name] = starter()
            time.sleep(1)

    def shutdown(signum, frame):
        """Handle shutdown signals."""
        print("\nShutting down...")
        shutdown_event.set()
        for name, proc in processes.items():
            if proc and proc.poll() is None:
                print(f"[{name}] Terminating...")
                proc.terminate()
                try:
                    proc.wait(timeout=5)
                except subprocess.TimeoutExpired:
                    proc.kill()

    signal.signal(signal.SIGINT, shutdown)
    signal.signal(signal.SIGTERM, shutdown)

    print("=" * 60)
    print("Starting webserver (port 8011) and worker")
    print("Press Ctrl+C to stop")
    print("=" * 60)

    web_thread = threading.Thread(
        target=monitor_process, args=("webserver", start_webserver), daemon=True
    )
    worker_thread = threading.Thread(
        target=monitor_process, args=("worker", start_worker), daemon=True
    )

    web_thread.start()
    worker_thread.start()

    # Wait for shutdown
    try:
        while not shutdown_event.is_set():
            time.sleep(0.5)
    except KeyboardInterrupt:
        shutdown(None, None)

    return 0


def enqueue_all(db: CatalogDatabase) -> list[tuple[str, int]]:
    """Queue a product scrape for every enabled store that has none pending."""
    from .job_queue import JobQueue

    queue = JobQueue(db)
    job_type = JobType.SCRAPE_PRODUCTS.value
    queued = []
    for settings in db.list_scraper_settings():
        store = settings["store"]
        if not settings["enabled"] or not supports(store, job_type):
            continue
        if queue.has_pending(store, job_type):
            continue
        queued.append((store, queue.enqueue(store, job_type, source="cli")))
    return queued


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Supermarket scraper orchestration and taxonomy mapping",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  gondola --list                                    # List scrapers and job types
  gondola --worker                                  # Run the job queue worker
  gondola --enqueue jumbo --type discover-subcategories
  gondola --scrape-all                              # Queue product scrapes for every store
  gondola --extract brand --store all               # Extract brand labels
  gondola --auto-map brand --store jumbo            # Map extracted labels to brands
  gondola --serve                                   # Run webserver + worker (dev mode)
        """,
    )

    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument("--list", "-l", action="store_true", help="List available scrapers")
    group.add_argument("--worker", "-w", action="store_true", help="Run the job queue worker")
    group.add_argument("--enqueue", "-e", metavar="STORE", help="Enqueue a scraper job")
    group.add_argument("--scrape-all", action="store_true", help="Enqueue product scrapes for all enabled stores")
    group.add_argument("--extract", choices=[k.value for k in LabelKind], help="Extract labels from products")
    group.add_argument("--auto-map", choices=[k.value for k in LabelKind], help="Auto-map extracted labels")
    group.add_argument("--seed", action="store_true", help="Create the default master categories")
    group.add_argument("--purge", action="store_true", help="Delete completed and failed jobs")
    group.add_argument("--serve", action="store_true", help="Run webserver and worker together (restarts on crash)")
    parser.add_argument(
        "--type", "-t",
        dest="job_type",
        choices=[t.value for t in JobType],
        default=JobType.SCRAPE_PRODUCTS.value,
        help="Job type for --enqueue (default: scrape-products)",
    )
    parser.add_argument("--store", default="all", help="Store for --extract / --auto-map (default: all)")
    parser.add_argument("--sample-size", type=int, help="Products sampled per store for --extract")

    args = parser.parse_args(argv)

    if args.list:
        print("Available scrapers:")
        for store in list_scrapers():
            job_types = ", ".join(SCRAPERS[store].job_types)
            print(f"  - {store}: {job_types}")
        return 0

    if args.serve:
        return run_serve()

    if args.worker:
        from .worker import run_worker
        print("Starting job queue worker...")
        print("Press Ctrl+C to stop")
        asyncio.run(run_worker())
        return 0

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    db = CatalogDatabase()

    try:
        if args.enqueue:
            from .job_queue import JobQueue

            store = args.enqueue
            ensure_supported(store, args.job_type)
            queue = JobQueue(db)
            if queue.has_pending(store, args.job_type):
                print(f"{store}/{args.job_type} is already queued or running")
                return 1
            job_id = queue.enqueue(store, args.job_type, source="cli")
            print(f"Job enqueued: {store}/{args.job_type} (job_id={job_id})")
            return 0

        if args.scrape_all:
            queued = enqueue_all(db)
            for store, job_id in queued:
                print(f"  - {store}: job_id={job_id}")
            print(f"Queued {len(queued)} product scrapes")
            return 0

        if args.extract:
            from .config import get_settings
            from .extraction import ExtractionJob

            job = ExtractionJob(db, sample_size=get_settings().extraction_sample_size)
            result = job.run(args.extract, args.store, args.sample_size)
            print(json.dumps(result, indent=2, ensure_ascii=False))
            return 1 if result["errors"] else 0

        if args.auto_map:
            from .mappings import MappingStore

            mapped = MappingStore(db).auto_map(args.auto_map, args.store)
            print(f"Auto-mapped {mapped} {args.auto_map} labels for {args.store}")
            return 0

        if args.seed:
            created = db.seed_master_categories()
            print(f"Created {created} master categories")
            return 0

        if args.purge:
            from .job_queue import JobQueue

            deleted = JobQueue(db).purge()
            print(f"Deleted {deleted} finished jobs")
            return 0
    except GondolaError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
