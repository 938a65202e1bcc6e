"""HTTP interface for the memory service."""
