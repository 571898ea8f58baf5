"""Recovery log exports."""

from .log import RecoveryLog, UnitOfWorkFactory

__all__ = ["RecoveryLog", "UnitOfWorkFactory"]
