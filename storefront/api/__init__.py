"""HTTP API for the storefront order engine."""
