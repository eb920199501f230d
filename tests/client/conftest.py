import base64
import itertools
import json
import time

import pytest


@pytest.fixture
def make_token():
    """Factory for JWT-shaped tokens whose payload carries the given ``exp``."""
    counter = itertools.count()

    def _make_token(exp: float | None = None, ttl: float | None = None, **claims) -> str:
        if ttl is not None:
            exp = time.time() + ttl
        if exp is not None:
            claims["exp"] = int(exp)
        claims.setdefault("jti", next(counter))
        payload = base64.urlsafe_b64encode(json.dumps(claims).encode()).decode().rstrip("=")
        return f"eyJhbGciOiJIUzI1NiIsInR5cCI6IkpXVCJ9.{payload}.c2lnbmF0dXJl"

    return _make_token
