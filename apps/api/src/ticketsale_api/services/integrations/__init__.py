"""Payment provider integrations."""
