"""acesync: range-based synchronization of versioned repositories, event logs and deployments."""

__version__ = "0.1.0"
