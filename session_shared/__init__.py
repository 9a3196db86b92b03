"""
Shared building blocks for the Auth Session client.

Contains the session data models, the storage port interface, the
structured exception hierarchy and the logging configuration.
"""
