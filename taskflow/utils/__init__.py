"""
Utilities Module
================

Helper functions and utility classes.
"""

from taskflow.utils.helpers import due_instant, resolve_timezone, utc_now

__all__ = ["due_instant", "resolve_timezone", "utc_now"]
