"""Command-line client for the ActionChat API."""
