"""Local AI coding-session ingestion and sync."""
