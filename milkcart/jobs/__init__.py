"""
Background Jobs Module

Handles scheduled tasks for:
- Payment session expiry
"""

from milkcart.jobs.scheduler import scheduler, start_scheduler, shutdown_scheduler
from milkcart.jobs.payment_jobs import expire_payment_sessions

__all__ = [
    "scheduler",
    "start_scheduler",
    "shutdown_scheduler",
    "expire_payment_sessions",
]
