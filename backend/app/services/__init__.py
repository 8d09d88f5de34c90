"""Services package for domain ingestion, LLM access and scheduled maintenance."""
