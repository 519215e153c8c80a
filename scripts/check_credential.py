#!/usr/bin/env python3
"""Show the redemption state of a credential, and optionally reissue it.

Usage: python scripts/check_credential.py <CREDENTIAL_ID> [--reissue]
"""
import json
import os
import sys
import requests

BASE_URL = os.environ.get('BASE_URL', 'http://localhost:5000')
ADMIN_API_KEY = os.environ.get('ADMIN_API_KEY')


def main():
    if not ADMIN_API_KEY:
        print('Missing ADMIN_API_KEY in env')
        sys.exit(1)
    if len(sys.argv) < 2:
        print('Usage: check_credential.py <CREDENTIAL_ID> [--reissue]')
        sys.exit(1)
    cred_id = int(sys.argv[1])
    headers = {'X-Admin-Key': ADMIN_API_KEY, 'Accept': 'application/json'}

    r = requests.get(f"{BASE_URL}/admin/credentials/{cred_id}", headers=headers, timeout=30)
    if r.status_code != 200:
        print('Error:', r.status_code, r.text[:200])
        sys.exit(1)
    print(json.dumps(r.json(), indent=2, sort_keys=True))

    if '--reissue' in sys.argv[2:]:
        r = requests.post(f"{BASE_URL}/admin/credentials/{cred_id}/reissue", headers=headers, timeout=30)
        print('reissue:', r.status_code, json.dumps(r.json(), indent=2, sort_keys=True))


if __name__ == '__main__':
    main()
