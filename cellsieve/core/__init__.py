"""Core modules: quality control and clustering."""
