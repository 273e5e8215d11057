"""MongoDB connection handling."""
