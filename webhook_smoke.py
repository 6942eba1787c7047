"""
Walks one return pickup through the EverestX webhook against a running server.

Needs a ReturnShipment with tracking number EVX-SMOKE-1 (return_flow=True,
is_active=True, return_id pointing at a return in pickup_scheduled), e.g.
created from the admin panel. Run with: python webhook_smoke.py
"""

import os

import requests

BASE = os.getenv('SMOKE_BASE_URL', 'http://127.0.0.1:8000/api/v1/returns')
TOKEN = os.getenv('SHIPPING_INTERNAL_TOKEN', '')
TRACKING = os.getenv('SMOKE_TRACKING_NUMBER', 'EVX-SMOKE-1')

HEADERS = {'X-Internal-Token': TOKEN} if TOKEN else {}

STEPS = [
    ('PICKED_UP', '2026-03-01T10:15:00Z'),
    ('PICKED_UP', '2026-03-01T10:17:00Z'),        # partner retry -> deduped
    ('BOOKED', '2026-03-01T08:00:00Z'),           # late, older event -> stale
    ('IN_TRANSIT', '2026-03-01T18:40:00Z'),
    ('OUT_FOR_DELIVERY', '2026-03-02T09:05:00Z'),
    ('DELIVERED', '2026-03-02T14:30:00Z'),
    ('OUT_FOR_DELIVERY', '2026-03-02T16:00:00Z'),  # partner lag -> regressive
]


def post_event(partner_status, timestamp):
    r = requests.post(f'{BASE}/webhook/everestx/', headers=HEADERS, json={
        'trackingNumber': TRACKING,
        'status': partner_status,
        'timestamp': timestamp,
    })
    r.raise_for_status()
    return r.json()


def main():
    for step, (partner_status, timestamp) in enumerate(STEPS, start=1):
        data = post_event(partner_status, timestamp)
        print(
            f"STEP {step} - {partner_status} @ {timestamp}: "
            f"{data['outcome']} | mapped={data['mapped']} | {data.get('reason', '')}"
        )


if __name__ == '__main__':
    main()
