"""Tenant access checks."""
