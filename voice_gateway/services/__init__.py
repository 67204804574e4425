"""
Clients for the external services the assistant works with.
"""
