"""maintsentry: host maintenance sessions with audited, allow-listed actions."""

__version__ = "1.0.0"
