"""Document change events and trigger dispatch."""
