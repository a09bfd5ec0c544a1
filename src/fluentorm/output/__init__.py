"""Terminal rendering for the CLI."""
