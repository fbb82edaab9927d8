"""agentgate - one agent conversation, many chat surfaces."""

__version__ = "0.1.0"
__logo__ = "🛰️"
