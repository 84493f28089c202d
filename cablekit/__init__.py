"""Pub/sub hub, encoders, metrics, identification and configuration for a real-time cable server."""

__version__ = "0.1.0"

__all__ = [
    "config",
    "counters",
    "encoders",
    "enats",
    "gobench",
    "hub",
    "identity",
    "messages",
    "metrics",
    "statsd",
]