"""
Operational HTTP API.
"""
