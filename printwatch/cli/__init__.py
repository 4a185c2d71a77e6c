"""Command line interface for printwatch."""
