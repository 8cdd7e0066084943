"""Storage backends: SQLite run history and report file export."""
