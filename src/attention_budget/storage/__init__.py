"""SQLite-backed persistence for post cache entries and settings."""
