"""SQLite storage layer for the inbox task queue."""
