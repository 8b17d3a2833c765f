"""Error taxonomy, middleware and caller authorization."""
