"""Settings, schemas and service plumbing shared by the notifier processes."""
