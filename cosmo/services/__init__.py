"""Data access over the async session."""
