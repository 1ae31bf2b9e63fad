"""
Unimem MCP server: retrieval, traversal and evaluation tools over stdio.
"""
