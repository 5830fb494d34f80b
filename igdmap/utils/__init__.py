"""Shared utilities for igdmap."""
