"""Flower generation task queue.

The ``flower_tasks`` table is the queue. A dispatcher polls it, claims the
oldest pending row with a compare-and-set ``UPDATE`` and runs the four-stage
pipeline (generate, upload image, upload metadata, mint) outside of any
database transaction. There is no broker: each claim is one short SQLite
write transaction, so several dispatcher processes against the same
database file still run every task at most once at a time.

Retry accounting lives entirely in the row (``retry_count``,
``max_retries``), which keeps the policy correct across worker restarts.
"""
