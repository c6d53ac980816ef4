"""
Core module - configuration, logging, errors and authentication.
"""
