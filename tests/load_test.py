import asyncio
import os
import sys
import time

import httpx

# Add project root to path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from api.main import issue_token

TARGET_URL = "http://localhost:8000"
if len(sys.argv) > 1 and sys.argv[1].startswith("http"):
    TARGET_URL = sys.argv[1]

TEST_ID = int(os.getenv("LOAD_TEST_ID", "1"))

async def simulate_candidate(client: httpx.AsyncClient, user_id: str, total_requests: int):
    """Open a session, then poll it and answer questions like a candidate would."""
    headers = {"X-Auth-Token": issue_token(user_id)}
    success = 0
    fail = 0
    times = []

    start = time.time()
    resp = await client.post(f"{TARGET_URL}/api/tests/{TEST_ID}/session", headers=headers)
    times.append(time.time() - start)
    if resp.status_code != 200:
        return 0, 1, times

    for i in range(total_requests):
        start = time.time()
        try:
            if i % 2:
                resp = await client.get(f"{TARGET_URL}/api/tests/{TEST_ID}/session", headers=headers)
            else:
                resp = await client.post(f"{TARGET_URL}/api/tests/{TEST_ID}/session/actions", headers=headers,
                                         json={"action": "select", "option": "a"})
            if resp.status_code == 200:
                success += 1
            else:
                fail += 1
        except httpx.HTTPError:
            fail += 1
        times.append(time.time() - start)

        if i % 2 == 0:
            await client.post(f"{TARGET_URL}/api/tests/{TEST_ID}/session/actions", headers=headers,
                              json={"action": "next"})

    return success, fail, times

async def run_load_test(concurrent_users: int, requests_per_user: int):
    print(f"Starting load test on {TARGET_URL} (test {TEST_ID})")
    print(f"Candidates: {concurrent_users}")
    print(f"Requests per candidate: {requests_per_user}")
    print("-" * 40)

    async with httpx.AsyncClient(timeout=10.0) as client:
        start_time = time.time()
        tasks = [
            simulate_candidate(client, f"load-{1000 + i}", requests_per_user)
            for i in range(concurrent_users)
        ]
        results = await asyncio.gather(*tasks)
        total_time = time.time() - start_time

    total_success = sum(r[0] for r in results)
    total_fail = sum(r[1] for r in results)
    all_times = [t for r in results for t in r[2]]
    avg_latency = (sum(all_times) / len(all_times)) * 1000 if all_times else 0

    print("-" * 40)
    print(f"Completed in {total_time:.2f} seconds")
    print(f"   Success: {total_success}")
    print(f"   Failed:  {total_fail}")
    print(f"   RPS (Req/sec): {len(all_times) / total_time:.2f}")
    print(f"   Avg Latency: {avg_latency:.2f} ms")

if __name__ == "__main__":
    USERS = 50
    REQS = 20

    # python tests/load_test.py [url] [users] [reqs]
    if len(sys.argv) > 2:
        USERS = int(sys.argv[2])
    if len(sys.argv) > 3:
        REQS = int(sys.argv[3])

    asyncio.run(run_load_test(USERS, REQS))
