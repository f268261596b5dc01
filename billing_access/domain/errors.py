"""Error types raised by the access core and the services built on it.

Authorization denials are plain ``False`` results and never appear here.
"""

from __future__ import annotations


class StorageUnavailableError(RuntimeError):
    """A lookup against the backing store could not complete.

    Distinct from a deny so callers can retry or answer 5xx instead of
    reporting a transient outage as "access denied".
    """


class ScheduleValidationError(ValueError):
    """Schedule attributes violate the recurrence descriptor rules."""


class CrossTenantError(ValueError):
    """A write targeted a resource owned by a different tenant than the acting one."""
