"""SQLite storage for task invocations, feedback and feature flags."""
