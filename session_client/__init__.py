"""
Auth Session client.

Client-side authentication session management: token storage, authorization
header injection and coordinated token refresh on top of an aiohttp client.
"""
