"""Pure domain types: approval lifecycle, routing, payloads, billing arithmetic."""
