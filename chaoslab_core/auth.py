from __future__ import annotations

import hmac

from chaoslab_core.errors import AuthError

OPERATOR_TOKEN_HEADER = "X-Operator-Token"
ACCESS_DENIED_MESSAGE = f"Access denied. Provide {OPERATOR_TOKEN_HEADER}."


def check_operator_token(expected: str, provided: str | None) -> None:
    """Raise AuthError unless ``provided`` matches the configured token.

    An empty ``expected`` token leaves the console open.
    """
    if not expected:
        return
    token = (provided or "").strip()
    if not token or not hmac.compare_digest(token.encode(), expected.encode()):
        raise AuthError(ACCESS_DENIED_MESSAGE)
