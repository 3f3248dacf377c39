"""Light-novel EPUB ingestion: metadata, sanitized chapters and block position maps."""
