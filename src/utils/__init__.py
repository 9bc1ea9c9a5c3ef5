"""
Shared utilities: configuration, logging and retries.
"""
