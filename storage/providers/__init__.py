"""Concrete store backends."""
