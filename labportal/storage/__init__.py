"""Upload limits and MIME policy for video evidence."""
