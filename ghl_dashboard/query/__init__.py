"""Local views over the synced snapshot."""
