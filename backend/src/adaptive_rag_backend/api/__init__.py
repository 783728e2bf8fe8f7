"""HTTP API for the adaptive retrieval feedback loop."""
