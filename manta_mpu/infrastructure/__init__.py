"""
Infrastructure layer: configuration, logging, request signing and the HTTP
transport to the storage service.
"""
