# backend/tests/helpers.py
from datetime import datetime, timedelta
import hashlib
import hmac
import json
from typing import Any, Dict, Tuple

from salon_engine.core.actor import Actor

TEST_WEBHOOK_SECRET = "sk_test_webhook_secret"


def actor_headers(actor: Actor) -> Dict[str, str]:
    return {"X-Actor-Id": actor.id, "X-Actor-Role": actor.role.value}


def at(base: datetime, minutes: int) -> datetime:
    return base + timedelta(minutes=minutes)


def signed_body(payload: Dict[str, Any], secret: str) -> Tuple[bytes, str]:
    body = json.dumps(payload).encode("utf-8")
    return body, hmac.new(secret.encode("utf-8"), body, hashlib.sha512).hexdigest()


def charge_success(reference: str, booking_id: str, amount_kobo: int = 500000) -> Dict[str, Any]:
    return {
        "event": "charge.success",
        "data": {
            "reference": reference,
            "amount": amount_kobo,
            "channel": "card",
            "metadata": {"booking_id": booking_id},
        },
    }
