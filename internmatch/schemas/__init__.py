"""
Schemas module - Request schemas for API endpoints (pydantic).
"""
