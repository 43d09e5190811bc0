"""External provider clients, caches, retry policy and ingestion adapters."""
