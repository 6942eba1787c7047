"""
Returns Module - Partner Webhook Authentication

Partners send a shared secret in a dedicated header (X-Internal-Token by
default). If no secret is configured, every request is accepted: that is the
explicit opt-out for environments without partner auth.
"""

import hmac

from django.conf import settings


def is_webhook_authorized(request):
    config = settings.RETURNS_WEBHOOK
    expected = str(config.get('SECRET') or '').strip()
    if not expected:
        return True

    received = str(request.headers.get(config['TOKEN_HEADER']) or '').strip()
    if not received:
        return False

    # Constant-time compare
    return hmac.compare_digest(received.encode('utf-8'), expected.encode('utf-8'))
