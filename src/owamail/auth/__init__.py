from owamail.auth.base import AuthContext, DAVAuth
from owamail.auth.password import PasswordAuth, ScopedAuth

__all__ = ["AuthContext", "DAVAuth", "PasswordAuth", "ScopedAuth"]
