"""Column layouts and export schemas for Carelink data."""
