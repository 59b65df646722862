"""Utility modules for the agri ledger kernel."""

from agri_kernel.utils.locking import KeyedLockRegistry

__all__ = ["KeyedLockRegistry"]
