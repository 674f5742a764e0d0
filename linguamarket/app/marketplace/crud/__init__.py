"""Marketplace DAO package."""
