"""igdmap - UPnP IGD gateway discovery and port mapping."""

__version__ = "0.1.0"
