"""CLI module for agentgate."""
