"""Round-robin speaking-turn queue backed by Redis."""
