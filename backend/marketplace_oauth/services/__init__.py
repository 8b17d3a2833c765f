"""Connection health check services."""
