"""
Pre-Deploy and Smoke Test Script.

Runs the app in-process against the configured database and Redis:
1. Health Check
2. Admin Login
3. Capping and Ledger reads
4. Validity Sweep
"""

import os
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from fastapi.testclient import TestClient
from reseller_backend.app.main import app

ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "admin@reseller.local")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "admin123")


def print_step(step, msg):
    print(f"[{step}] {msg}")


def fail(msg):
    print(f"❌ FAILURE: {msg}")
    sys.exit(1)


def success(msg):
    print(f"✅ {msg}")


def main():
    print("🚀 Starting Deployment Validation...")

    with TestClient(app) as client:
        # 1. Health Check
        print_step("PRE-DEPLOY", "Checking /health...")
        response = client.get("/health")
        if response.status_code != 200:
            fail(f"Health check failed: {response.status_code} {response.text}")
        success(f"Health: {response.json()}")

        # 2. Admin Login (seed_users.py creates this account)
        print_step("AUTH", f"Logging in as {ADMIN_EMAIL}...")
        response = client.post("/v1/auth/login", json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD})
        if response.status_code != 200:
            fail(f"Admin login failed: {response.status_code} {response.text}")
        token = response.json()["data"]["access_token"]
        headers = {"Authorization": f"Bearer {token}"}
        success("Admin token issued")

        # 3. Read-only checks
        print_step("VERIFY", "Checking capping settings...")
        response = client.get("/v1/capping", headers=headers)
        if response.status_code != 200:
            fail(f"Capping read failed: {response.status_code} {response.text}")
        success(f"Capping: {response.json()['data']}")

        print_step("VERIFY", "Checking ledger history...")
        response = client.get("/v1/credits", params={"limit": 5}, headers=headers)
        if response.status_code != 200:
            fail(f"Ledger read failed: {response.status_code} {response.text}")
        success(f"Ledger reachable, {response.json()['data']['total']} recent entries")

        # 4. Validity sweep, safe to repeat
        print_step("SMOKE", "Running validity sweep...")
        response = client.post("/v1/admin/ops/validity-sweep", headers=headers)
        if response.status_code != 200:
            fail(f"Validity sweep failed: {response.status_code} {response.text}")
        success(f"Sweep: {response.json()['data']}")

    success("Deployment Validation Passed!")


if __name__ == "__main__":
    main()
