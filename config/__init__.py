"""Application settings loaded from YAML."""
