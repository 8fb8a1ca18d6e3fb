"""In-process LRU/TTL caching for the telecom SME customer API."""
