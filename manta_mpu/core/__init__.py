"""
Core module containing the multipart upload domain model, collaborator
interfaces and engine services, independent of transport and configuration
concerns.
"""
