"""Run several applications in one process with start and stop hooks, signal handling and graceful shutdown."""

__version__ = "1.0.0"