"""Function selection, the tool registry and the batch executor."""
