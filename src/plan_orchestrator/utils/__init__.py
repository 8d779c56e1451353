"""Shared utilities: atomic file writes, subprocess helpers, validators, logging."""
