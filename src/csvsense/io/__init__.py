"""Upload decoding and parsing."""
