"""Wire contracts: inbound request variants and the result envelope."""
