"""Minimal HTTP service bootstrap: access log, panic recovery and graceful shutdown."""
