"""Bundled lesson content (one JSON document per lesson)."""
