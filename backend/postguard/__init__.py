"""Content-integrity services for the social backend."""
