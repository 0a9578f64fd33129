"""Configuration and input loading utilities."""
