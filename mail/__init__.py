"""Mail provider clients."""
