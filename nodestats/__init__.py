"""Node health monitoring: system statistics collectors, in-process metrics and a network health check."""

__version__ = "0.1.0"