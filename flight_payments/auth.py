from fastapi import Header, HTTPException
from jose import jwt, JWTError

from flight_payments.config import get_payment_settings


def verify_token(authorization: str = Header(...)) -> dict:
    try:
        scheme, token = authorization.split()
        if scheme.lower() != "bearer":
            raise ValueError("unsupported auth scheme")
        return jwt.decode(token, get_payment_settings().jwt_secret, algorithms=["HS256"])
    except (ValueError, JWTError):
        raise HTTPException(status_code=401, detail="Invalid or missing token")
