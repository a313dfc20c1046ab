"""Event subscriber host: routes inbound domain events to a single subscriber."""

__version__ = "1.0.0"
