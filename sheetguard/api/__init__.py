"""API layer — FastAPI normalization service."""
