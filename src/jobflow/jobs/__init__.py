"""
Job subsystem.

Components:
- job_models.py: data structures (JobDefinition, QueueEntry, Retention, ...)
- queue_store.py: SQLite delay queue with id dedupe, leases and re-arm
- mailbox_store.py: SQLite ordered lists for named tasks and external events
- job_registry.py: explicit job registry + per-job submission API (start/task)
- queue_worker.py: bounded-concurrency queue consumer
- job_runner.py: drives run() with backpressure and continuation
- task_executor.py: drives execute() for anonymous and named tasks
- recovery.py: startup re-submission of delayed entries
- mailbox_poller.py: fixed-interval bridge from event mailboxes to poll()
- scheduler.py: wires the above together
- job_api.py: small helpers for publishers and operators
"""
