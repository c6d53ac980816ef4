"""
Services - billing, usage quotas and the outbound provider clients.
"""
