"""Recovery operations and partial failure detection."""
