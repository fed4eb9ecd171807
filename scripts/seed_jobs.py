"""
Seed script — defines a few sample recurring jobs for demo purposes.

Usage:
    python -m scripts.seed_jobs

This creates:
- 1 nightly report call at 02:00 UTC
- 1 heartbeat call every minute
- 1 call every 30 seconds to an endpoint that always fails (demos retry + failed list)

Run this after the API, scheduler and worker are up. Jobs that already exist
(same name) are reported and left alone.
"""

import httpx

BASE_URL = "http://localhost:8000"


def seed():
    client = httpx.Client(base_url=BASE_URL, timeout=10.0)

    jobs = [
        {
            "name": "nightly-report",
            "cron_expression": "0 2 * * *",
            "task_payload": {
                "type": "API_CALL",
                "config": {"url": "https://httpbin.org/post", "method": "POST", "data": {"report": "nightly"}},
            },
        },
        {
            "name": "heartbeat",
            "cron_expression": "* * * * *",
            "task_payload": {
                "type": "API_CALL",
                "config": {"url": "https://httpbin.org/get", "method": "GET"},
            },
        },
        {
            "name": "always-failing",
            "cron_expression": "*/30 * * * * *",
            "task_payload": {
                "type": "API_CALL",
                "config": {"url": "https://httpbin.org/status/500", "method": "GET", "timeout": 5},
            },
        },
    ]

    print(f"Defining {len(jobs)} jobs at {BASE_URL}...\n")

    for job in jobs:
        resp = client.post("/jobs/", json=job)
        if resp.status_code == 409:
            print(f"  [exists] {job['name']}")
            continue
        resp.raise_for_status()
        data = resp.json()
        print(f"  [{data['id']}] {data['name']} [{data['cron_expression']}]")

    print("\nDone! The scheduler picks these up on its next cycle.")
    print("Ledger stats:  curl http://localhost:8000/executions/stats")
    print("List jobs:     curl http://localhost:8000/jobs/")


if __name__ == "__main__":
    seed()
