"""Order settlement engine for the ticket-to-sale platform."""
