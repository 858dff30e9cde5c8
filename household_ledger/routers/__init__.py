"""API routers."""

from household_ledger.routers import imports

__all__ = ["imports"]
