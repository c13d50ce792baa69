"""Clients and helpers for the LLM and embedding providers."""
