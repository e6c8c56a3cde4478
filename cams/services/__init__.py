"""Domain services for identity, applications and persisted logs."""
