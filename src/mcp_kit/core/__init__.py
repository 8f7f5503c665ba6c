"""Settings and logging shared by every MCP Kit component."""
