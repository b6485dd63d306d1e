"""Payment webhook intake and processing."""
