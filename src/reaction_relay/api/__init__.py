"""HTTP API for the reaction relay."""
