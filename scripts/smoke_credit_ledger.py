"""
Smoke test for a running credit ledger deployment.

Walks one account through its lifecycle over HTTP:
1. Health check
2. Account creation (idempotent on repeat runs)
3. Receipt + investment postings
4. Balance adjustment
5. Reconciliation must report no drift

Needs the ids printed by seed_agency.py:

    python scripts/smoke_credit_ledger.py <agency_id> <manager_user_id> <client_id>
"""

import sys
import time
import uuid
from decimal import Decimal
from pathlib import Path

import httpx

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from ofistur.app.core.config import settings
from ofistur.app.core.jwt import create_access_token

BASE_URL = "http://127.0.0.1:8000"
API_PREFIX = f"/{settings.api_version}"


def print_step(step, msg):
    print(f"[{step}] {msg}")


def fail(msg):
    print(f"❌ FAILURE: {msg}")
    sys.exit(1)


def success(msg):
    print(f"✅ {msg}")


def wait_for_server(retries=10, delay=2):
    url = f"{BASE_URL}/health"
    print(f"Waiting for server at {url}...")
    for _ in range(retries):
        try:
            resp = httpx.get(url)
            if resp.status_code == 200:
                return True
        except httpx.ConnectError:
            pass
        time.sleep(delay)
    return False


def expect(resp, *codes):
    if resp.status_code not in codes:
        fail(f"{resp.request.method} {resp.request.url.path} -> {resp.status_code} {resp.text}")
    return resp.json()


def main(agency_id: int, user_id: int, client_id: int):
    print("🚀 Starting credit ledger smoke test...")

    print_step("HEALTH", "Checking /health...")
    if not wait_for_server():
        fail("Server is not reachable")
    success("Server is up")

    token = create_access_token(
        data={"sub": f"smoke-{user_id}", "user_id": user_id, "agency_id": agency_id, "role": "MANAGER"}
    )
    run_id = uuid.uuid4().hex[:8]

    with httpx.Client(
        base_url=f"{BASE_URL}{API_PREFIX}",
        headers={"Authorization": f"Bearer {token}", "X-Correlation-ID": f"smoke-{run_id}"},
    ) as client:
        print_step("ACCOUNT", "Creating ARS account for client...")
        account = expect(
            client.post("/credit/accounts", json={"client_id": client_id, "currency": "ARS"}),
            200, 201,
        )
        account_id = account["id_credit_account"]
        success(f"Account #{account['agency_credit_account_id']} (balance {account['balance']})")

        print_step("POST", "Posting receipt and investment...")
        for doc_type, amount in (("receipt", "1500.00"), ("investment", "400.00")):
            entry = expect(
                client.post("/credit/entries", json={
                    "account_id": account_id,
                    "currency": "ARS",
                    "amount": amount,
                    "doc_type": doc_type,
                    "concept": f"Smoke {doc_type}",
                    "reference": f"SMOKE-{run_id}",
                }),
                201,
            )
            success(f"Entry #{entry['agency_credit_entry_id']} {doc_type} {amount}")

        print_step("ADJUST", "Forcing balance to 1000.00...")
        result = expect(
            client.post(f"/credit/accounts/{account_id}/adjust",
                        json={"target_balance": "1000.00", "reason": f"smoke {run_id}"}),
            200,
        )
        if Decimal(result["account"]["balance"]) != Decimal("1000.00"):
            fail(f"Unexpected balance after adjust: {result['account']['balance']}")
        success(f"Adjusted by {result['delta']}")

        print_step("RECONCILE", "Checking stored balance against entries...")
        report = expect(client.get(f"/credit/accounts/{account_id}/reconciliation"), 200)
        if not report["consistent"]:
            fail(f"Drift detected: {report}")
        success(f"{report['entry_count']} entries, no drift")

    success("Credit ledger smoke test passed!")


if __name__ == "__main__":
    if len(sys.argv) != 4:
        print(__doc__)
        sys.exit(2)
    main(*(int(arg) for arg in sys.argv[1:]))
