"""Shared validation helpers."""

from __future__ import annotations

# Query ids travel in URLs and log lines; UUIDs and slug-style ids both match.
QUERY_ID_PATTERN = r"^[A-Za-z0-9]+(?:[._:-][A-Za-z0-9]+)*$"
