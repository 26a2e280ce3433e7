"""Plan execution over profile samples: step semantics and result insights."""
