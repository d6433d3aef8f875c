"""docsync test suite."""
