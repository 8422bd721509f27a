"""
Authentication package.

- passwords: hashing strategies (bcrypt, and MD5 for test configuration).
- credentials: email/password verification against the user store.
- sessions: signed, stateless session tokens.
"""

from .credentials import CredentialVerifier
from .passwords import PasswordHasher, BcryptPasswordHasher, Md5PasswordHasher, build_password_hasher
from .sessions import Session, SessionIssuer, SessionUser, IssuedSession

__all__ = [
    "CredentialVerifier",
    "PasswordHasher",
    "BcryptPasswordHasher",
    "Md5PasswordHasher",
    "build_password_hasher",
    "Session",
    "SessionIssuer",
    "SessionUser",
    "IssuedSession",
]
