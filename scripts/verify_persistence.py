"""
Restart persistence check.

Starts the API, opens an order with an order creator's token, restarts
the server and verifies the order and its scheduled close survived.

Usage:
    python -m chickentender.seed_users          # prints tokens
    CT_TOKEN=<admin token> python scripts/verify_persistence.py
"""

import os
import signal
import subprocess
import sys
import time
from datetime import datetime, timedelta, timezone

import httpx

BASE_URL = "http://127.0.0.1:8000"
API_PREFIX = "/v1"


def wait_for_server(retries=10, delay=2):
    url = f"{BASE_URL}/health"
    print(f"Waiting for server at {url}...")
    for _ in range(retries):
        try:
            resp = httpx.get(url)
            if resp.status_code == 200:
                print("✅ Server is up!")
                return True
        except httpx.ConnectError:
            pass
        time.sleep(delay)
    print("❌ Server failed to start.")
    return False


def start_server():
    return subprocess.Popen(
        [sys.executable, "-m", "uvicorn", "chickentender.app.main:app", "--host", "127.0.0.1", "--port", "8000"],
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
    )


def stop_server(proc):
    proc.send_signal(signal.SIGTERM)
    proc.wait()


def run_verification(token):
    headers = {"Authorization": f"Bearer {token}"}

    print("\n--- [Step 1] Starting Server (Initial) ---")
    proc = start_server()
    try:
        if not wait_for_server():
            raise RuntimeError("Server start failed")

        print("\n--- [Step 2] Opening Order ---")
        close_date = datetime.now(timezone.utc) + timedelta(hours=2)
        resp = httpx.post(
            f"{BASE_URL}{API_PREFIX}/admin/orders",
            json={"order_type": "Pizza", "close_date": close_date.isoformat()},
            headers=headers,
        )
        if resp.status_code != 201:
            raise RuntimeError(f"Order creation failed: {resp.status_code} {resp.text}")
        order_id = resp.json()["id"]
        print(f"✅ Order {order_id} opened")
    finally:
        print("\n--- [Step 3] Stopping Server ---")
        stop_server(proc)

    time.sleep(2)

    print("\n--- [Step 4] Restarting Server ---")
    proc = start_server()
    try:
        if not wait_for_server():
            raise RuntimeError("Server restart failed")

        print("\n--- [Step 5] Verifying Order ---")
        resp = httpx.get(f"{BASE_URL}{API_PREFIX}/orders/{order_id}", headers=headers)
        if resp.status_code != 200:
            raise RuntimeError(f"Order lost after restart: {resp.status_code} {resp.text}")
        if resp.json()["state"] != "OPEN":
            raise RuntimeError(f"Order {order_id} unexpectedly {resp.json()['state']}")
        print("✅ Order persisted")

        print("\n--- [Step 6] Cleaning Up ---")
        resp = httpx.post(f"{BASE_URL}{API_PREFIX}/admin/orders/{order_id}/cancel", headers=headers)
        print(f"Cancel: {resp.status_code}")
    finally:
        print("\n--- [Step 7] Stopping Server ---")
        stop_server(proc)


if __name__ == "__main__":
    token = os.getenv("CT_TOKEN")
    if not token:
        print("❌ Set CT_TOKEN to an order creator's bearer token")
        sys.exit(1)
    run_verification(token)
