"""Network reachability monitoring."""

from .monitor import ConnectivityMonitor

__all__ = ["ConnectivityMonitor"]
