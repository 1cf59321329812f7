import hashlib
import hmac
import json
from typing import Any, Dict


def serialize_payload(payload: Dict[str, Any]) -> str:
    return json.dumps(payload, separators=(",", ":"), sort_keys=True)


def generate_webhook_signature(payload: Dict[str, Any], secret: str) -> str:
    """
    Generate HMAC-SHA256 signature for a progress webhook payload.

    Args:
        payload: Dictionary payload to sign
        secret: Webhook secret key

    Returns:
        str: Signature in format "sha256=<hex_digest>", or "" without a secret

    Example:
        payload = {"event": "job.progress", "data": {"job_id": "123"}}
        signature = generate_webhook_signature(payload, "your_webhook_secret")
        # Returns: "sha256=abc123..."
    """
    if not secret:
        return ""

    signature = hmac.new(
        secret.encode("utf-8"), serialize_payload(payload).encode("utf-8"), hashlib.sha256
    ).hexdigest()
    return f"sha256={signature}"


def verify_webhook_signature(payload: Dict[str, Any], secret: str, signature: str) -> bool:
    """Check an ``X-Webhook-Signature`` value on the receiving end of a progress webhook"""
    expected = generate_webhook_signature(payload, secret)
    return bool(expected) and hmac.compare_digest(expected, signature)
