"""Pydantic models for requests, dispatch results and status."""
