"""Question selection, publication and notification jobs."""
