"""Steam Workshop download and publish pipelines."""
