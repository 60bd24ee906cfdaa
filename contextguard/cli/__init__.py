"""CLI module for contextguard."""
