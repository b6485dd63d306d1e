"""Order session lifecycle services."""
