"""Plan → code → review agent pipeline with resumable SQLite state."""

__version__ = "0.1.0"
