"""Command-line interface for devwebify."""
