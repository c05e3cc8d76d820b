"""Session-scoped persistence repositories."""
