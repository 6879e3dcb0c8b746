"""Intent registry, local keyword detection and AI classification."""
