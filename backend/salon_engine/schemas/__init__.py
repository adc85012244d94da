# backend/salon_engine/schemas/__init__.py
"""Pydantic request/response models for the HTTP surface."""
