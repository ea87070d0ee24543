"""
PieMDM OpenAPI: signed client for the entity-management API.

Every outbound call is canonicalized and signed with HMAC-SHA256 so the
server can verify authenticity and reject replayed or tampered requests.
"""

__version__ = "1.0.0"
__author__ = "PieMDM Team"
