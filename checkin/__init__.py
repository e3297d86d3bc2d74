"""Event check-in queue: sequential tickets and a "now serving" counter."""

__version__ = "0.1.0"
