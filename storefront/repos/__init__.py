"""Concrete implementations of the repository and gateway protocols."""
