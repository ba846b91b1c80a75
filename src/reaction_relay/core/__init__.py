"""Core configuration for the reaction relay."""
