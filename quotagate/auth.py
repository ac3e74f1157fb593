import hmac

from .errors import Unauthorized


class SudoKeyValidator:
    """Constant-time check of a candidate against the superuser secret."""

    def __init__(self, sudo_key: str) -> None:
        if not sudo_key:
            raise ValueError("sudo key must not be empty")
        self._expected = sudo_key.encode("utf-8")

    def __call__(self, candidate: str) -> bool:
        return hmac.compare_digest(self._expected, (candidate or "").encode("utf-8"))

    def require(self, candidate: str) -> None:
        if not self(candidate):
            raise Unauthorized()
