"""Transport exports."""

from .lease import TransportLease

__all__ = ["TransportLease"]
