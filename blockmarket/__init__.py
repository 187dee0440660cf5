"""The Block Market: order book and pricing engine for meal-block trading."""
