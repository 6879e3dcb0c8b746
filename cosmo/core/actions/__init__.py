"""Action mappings resolved into per-intent action plans."""
