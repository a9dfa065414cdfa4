from uuid import uuid4

INTENT = "pi"
TRANSACTION = "txn"
RECEIPT = "rcpt"
PAYMENT_METHOD = "pm"


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid4().hex}"
