"""Command line interface for igdmap."""
