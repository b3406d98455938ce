"""
Traffic generator. Sends a mix of requests at one test bench instance:
  40% /delay   latency, 50-1500ms
  20% /status  random status codes, mostly 2xx
  10% /error   handled and fatal errors
  20% /chain   multi-instance call graphs
  10% /crud    small SQLite mutations

Run it. Open Grafana (or Kibana, or whatever is on the other end). Watch.
"""
import os
import random
import sys
import time

import httpx

BASE_URL = os.getenv("BASE_URL", "http://localhost:3000")

# Weighted endpoint distribution. Adjust these to simulate different scenarios.
# Only care about traces? Crank /chain up.
ENDPOINTS = [
    ("/delay",  0.40),
    ("/status", 0.20),
    ("/error",  0.10),
    ("/chain",  0.20),
    ("/crud",   0.10),
]

STATUS_CODES = [200, 200, 200, 201, 204, 400, 404, 429, 500, 503]
CHAIN_SEQUENCES = ["1234", "3214", "14", "2", "4321"]


def pick_endpoint(r=None):
    if r is None:
        r = random.random()
    cumulative = 0
    for endpoint, weight in ENDPOINTS:
        cumulative += weight
        if r <= cumulative:
            return endpoint
    return ENDPOINTS[0][0]


def build_request(endpoint):
    """(method, path, params, json) for one request to `endpoint`."""
    if endpoint == "/delay":
        return "GET", endpoint, {"delay": random.randint(50, 1500)}, None
    if endpoint == "/status":
        return "GET", endpoint, {"code": random.choice(STATUS_CODES)}, None
    if endpoint == "/error":
        return "GET", endpoint, {"type": random.choice(["handled", "fatal", "none"])}, None
    if endpoint == "/chain":
        return "GET", endpoint, {"seq": random.choice(CHAIN_SEQUENCES)}, None
    if endpoint == "/crud":
        operation = "".join(op for op in "CRUD" if random.random() < 0.5) or "R"
        return "POST", endpoint, None, {"operation": operation}
    return "GET", endpoint, None, None


def send(client, endpoint):
    method, path, params, body = build_request(endpoint)
    try:
        resp = client.request(method, f"{BASE_URL}{path}", params=params, json=body)
    except httpx.HTTPError as e:
        return f"✗ {e}"
    return "✓" if resp.status_code < 400 else f"✗ {resp.status_code}"


def main():
    rps = float(sys.argv[1]) if len(sys.argv) > 1 else 5.0
    print(f"~{rps} req/s against {BASE_URL}. Ctrl+C to stop.")

    with httpx.Client(timeout=10) as client:
        count = 0
        try:
            while True:
                endpoint = pick_endpoint()
                status = send(client, endpoint)
                if status != "✓":
                    print(f"  {endpoint} {status}")

                count += 1
                if count % 20 == 0:
                    print(f"  {count} sent")

                time.sleep(1.0 / rps)
        except KeyboardInterrupt:
            print(f"  stopped after {count}")


if __name__ == "__main__":
    main()
