"""Core request/result types and model selection for SchemaFlow."""
