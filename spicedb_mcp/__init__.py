"""
spicedb-mcp - expose a SpiceDB permissions system to LLM agents over MCP.

The server module is the entry point; the client, pagination, trace, schema
and relationships modules form the backend client it is built on.
"""

__version__ = "0.1.0"
