"""Service shell around allotment_core: SQLite store, run artifacts and MCP tools."""
