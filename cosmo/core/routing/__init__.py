"""Cost-tier aware model routing."""
