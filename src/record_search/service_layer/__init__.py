"""Service layer - the indexing and query use cases."""
