"""
Payment callback signature verification.

The gateway signs ``"{order_id}|{payment_id}"`` with HMAC-SHA256 using the
merchant key secret and returns the hex digest to the browser, which relays
it to ``POST /bookings/verify``.
"""
import hashlib
import hmac


def compute_signature(secret: str, order_id: str, payment_id: str) -> str:
    """Compute the hex HMAC-SHA256 signature for an order/payment pair."""
    message = f"{order_id}|{payment_id}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def verify(secret: str, order_id: str, payment_id: str, signature: str) -> bool:
    """
    Check a payment callback signature.

    Compares in constant time. Any empty input fails verification.
    """
    if not secret or not order_id or not payment_id or not signature:
        return False
    expected = compute_signature(secret, order_id, payment_id)
    supplied = signature.strip().lower().encode("utf-8")
    return hmac.compare_digest(expected.encode("ascii"), supplied)
