"""Recording ingestion, lifecycle and recovery orchestration."""
