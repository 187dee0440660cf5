"""HTTP API over a market session."""
