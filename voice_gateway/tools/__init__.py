"""
Tool catalog and execution for the realtime model's function calls.
"""
