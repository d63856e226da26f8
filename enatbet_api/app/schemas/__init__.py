"""Pydantic request and response models for API v1."""
