#!/usr/bin/env python3
"""Issue an access link by hand, e.g. when a payment callback was missed.

Usage: python scripts/issue_link.py <EMAIL> [CONTENT_REF]
"""
import os
import sys
import requests

BASE_URL = os.environ.get('BASE_URL', 'http://localhost:5000')
ADMIN_API_KEY = os.environ.get('ADMIN_API_KEY')

if not ADMIN_API_KEY:
    print('Missing ADMIN_API_KEY in env')
    sys.exit(1)
if len(sys.argv) < 2:
    print('Usage: issue_link.py <EMAIL> [CONTENT_REF]')
    sys.exit(1)

payload = {
    'email': sys.argv[1],
    'contentRef': sys.argv[2] if len(sys.argv) > 2 else os.environ.get('DEFAULT_CONTENT_REF', 'guide'),
}
r = requests.post(f"{BASE_URL}/tokens", headers={'X-Admin-Key': ADMIN_API_KEY}, json=payload, timeout=30)
if r.status_code != 201:
    print('Error:', r.status_code, r.text[:200])
    sys.exit(1)
res = r.json()
print('email sent:', res['emailSent'])
if not res['emailSent']:
    # Only shown to the operator so they can forward it manually
    print('linkUrl:', res['linkUrl'])
