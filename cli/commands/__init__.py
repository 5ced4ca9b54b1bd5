"""Command groups for the warden CLI."""
