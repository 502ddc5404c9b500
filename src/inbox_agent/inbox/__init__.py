"""Inbox task queue: durable queue, bounded executor, recovery and follow-ups.

A task moves through ``pending -> queued -> running -> completed|waiting|failed``
and can be rejected before it runs. Exclusivity comes from a compare-and-swap
claim in SQLite, so the scheduler may be triggered redundantly from message
handlers, task completions and startup recovery without running a task twice.
"""
