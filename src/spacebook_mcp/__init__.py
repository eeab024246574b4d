"""SpaceBook MCP: resource booking conflict resolution and approval workflow."""

__version__ = "0.1.0"
