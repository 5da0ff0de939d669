"""FastAPI application for the restaurant ordering and payments API."""
