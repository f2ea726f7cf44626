"""Smart Fire Hub AI agent relay."""
