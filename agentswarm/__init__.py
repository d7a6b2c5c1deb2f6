"""
agentswarm - orchestrate a tree of cooperating agent instances over MCP
"""

__version__ = "0.3.0"
