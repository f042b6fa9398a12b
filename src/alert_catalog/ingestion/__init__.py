"""Alert ingestion: extraction, URL handling, ledgers and the pipeline."""
