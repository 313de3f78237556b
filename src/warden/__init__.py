"""Warden - account, authentication and authorization service.

Provides user registration and login with rotating JWT token pairs,
email verification and password reset flows, role-based access control,
and idempotent handling of write requests.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
