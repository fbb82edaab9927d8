"""Utility functions for agentgate."""

from agentgate.utils.helpers import isoformat_z, parse_iso, safe_filename, utc_now

__all__ = ["isoformat_z", "parse_iso", "safe_filename", "utc_now"]
