"""flashsync: SM-2 review scheduling with batched progress sync."""
