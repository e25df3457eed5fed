"""
Durable job queue.

- job_types: job type names, queue routing and payload models
- retry_policy: backoff and retry decisions
- job_queue: the sync_jobs table as a queue
- worker_pool: bounded-concurrency execution returning futures
"""
