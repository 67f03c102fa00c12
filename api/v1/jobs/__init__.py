"""
Job lifecycle coordination.

This package provides:
- A record store for job metadata and status
- A Postgres-backed work queue with leases, heartbeats and backoff
- The lifecycle coordinator with compensation on failed enqueues
- A worker pool executing registered processors
"""
