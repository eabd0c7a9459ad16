"""Terminal output for shardplan commands."""
