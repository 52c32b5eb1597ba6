"""Cross-cutting platform concerns: error shapes and log redaction."""
