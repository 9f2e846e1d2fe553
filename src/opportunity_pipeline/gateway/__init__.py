"""Partner API clients, webhook ingestion, scheduled sync and health monitoring."""
