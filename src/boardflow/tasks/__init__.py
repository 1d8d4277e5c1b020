"""Celery tasks for background processing.

This module provides async task execution for:
- Approval event outbox relay
"""

from boardflow.core.celery_app import celery_app

__all__ = ["celery_app"]
