"""
Upload validation helpers.
"""
