"""Recording ingestion."""
