"""
Platform services: logging, access control, observability and the HTTP API.
"""
