"""Packaged JSON schemas for idlesync."""
