"""Document to resource-record decoding."""
