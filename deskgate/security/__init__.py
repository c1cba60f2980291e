"""Cookie signing and principal resolution."""

from deskgate.security.cookies import sign, sign_cookie, unsign, unsign_cookie
from deskgate.security.principals import Principal, PrincipalStore

__all__ = [
    "Principal",
    "PrincipalStore",
    "sign",
    "sign_cookie",
    "unsign",
    "unsign_cookie",
]
