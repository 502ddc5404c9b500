"""Inbox task queue and concurrent execution engine for a personal AI agent."""

__version__ = "0.1.0"
