"""Job Feed Importer Package.

This package contains the import pipeline that ingests job postings from
remote feeds and merges them into the job store:
- feed_normalizer: Fetches RSS/XML feeds and converts entries to job drafts
- importer: Upsert engine, batch processor and import run lifecycle
- queue: Durable import queue and the worker pool that drains it
- store: Persistence of job records and import runs
- notifier: Progress and completion events for import runs
"""

__version__ = "0.1.0"
