"""HTTP status surface and scheduler entry point for comfort-select."""
