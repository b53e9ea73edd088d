"""Core infrastructure: configuration, database, logging and shared errors."""
