"""Shared utilities used across the rounds service."""
