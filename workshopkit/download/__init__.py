"""Transfer, extraction and filesystem helpers used by the Workshop pipelines."""
