"""HTTP API for run ingest and territory reads."""
