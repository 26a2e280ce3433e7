"""Intent classification, entity extraction and plan compilation."""
