"""Discussion source access: rate limiting, retries and the per-entity crawler."""
