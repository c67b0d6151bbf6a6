"""Domain core: events, errors, ports and use cases."""
