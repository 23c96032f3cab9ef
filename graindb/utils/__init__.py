"""Small helpers shared across graindb (environment access)."""
