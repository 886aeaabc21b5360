"""HTTP service for download-preparation jobs."""
