"""Logging, diagnostics and config ownership."""
