"""Child process automation: interactive CLI sessions and the JSON-lines helper."""
