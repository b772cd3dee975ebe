"""Hybrid views

Materialized aggregates over an event log, versioned by a hash of their query and merged at
read time with a live query over the rows they don't cover yet.
"""

from .models import EPOCH, ViewDefinition
from .registry import ViewRegistry
from .scheduler import RecurringJob, refresh_job
from .view import HybridView

__version__ = "1.0.0"

__all__ = ["EPOCH", "HybridView", "RecurringJob", "ViewDefinition", "ViewRegistry", "refresh_job"]
