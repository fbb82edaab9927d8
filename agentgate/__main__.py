"""
Entry point for running agentgate as a module: python -m agentgate
"""

from agentgate.cli.commands import app

if __name__ == "__main__":
    app()
