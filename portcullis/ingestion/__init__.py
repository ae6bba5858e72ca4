"""Source connectors, introspection and snapshot extraction."""
