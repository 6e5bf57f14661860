"""Cross-cutting runtime helpers (logging)."""
