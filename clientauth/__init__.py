"""
clientauth: relying-party side of the PASETO v4 challenge/response login.
"""

from .auth_server import AuthServer
from .client import Client
from .config import ClientConfig, Settings
from .keys import AsymmetricPublicKey, AsymmetricSecretKey, SymmetricKey
from .models import User
from .policy import VerificationPolicy

__version__ = "0.1.0"

__all__ = [
    "AsymmetricPublicKey",
    "AsymmetricSecretKey",
    "AuthServer",
    "Client",
    "ClientConfig",
    "Settings",
    "SymmetricKey",
    "User",
    "VerificationPolicy",
]
