"""Archive ingestion into object storage with streamed progress."""
