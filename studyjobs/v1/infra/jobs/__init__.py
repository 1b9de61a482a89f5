"""
Background job engine for AI generation of learning material.

This package provides a database-backed job system with:
- A job table that is the queue, claimed with compare-and-swap updates
- Per-user sliding-window rate limiting at creation time
- Exponential backoff persisted on the job row
- A closed registry mapping each job type to its handler
- Fan-out of hierarchy nodes into content generation jobs
"""
