"""
Demo script: submits a generation and follows it until it finishes.

Usage:
    python -m scripts.submit_video "A majestic lion walking through the savanna at sunset"

Run this against a local API started with GENERATION_BACKEND=simulated to
watch a video go through queued → generating → processing → completed.
"""

import sys
import time

import httpx

BASE_URL = "http://localhost:8000"
USER_ID = "demo-user"


def submit(prompt: str) -> None:
    client = httpx.Client(base_url=BASE_URL, timeout=10.0, headers={"X-User-Id": USER_ID})

    cost = client.post("/videos/cost", json={"resolution": "720p", "duration": 10, "quality": "balanced"})
    cost.raise_for_status()
    print(f"Estimated cost: {cost.json()['total_credits']} credits")

    resp = client.post("/videos/", json={"prompt": prompt, "title": prompt[:60]})
    if resp.status_code != 201:
        body = resp.json()
        print(f"Rejected: [{body['code']}] {body['message']}")
        return
    video = resp.json()
    print(f"Submitted video {video['id']}")

    while True:
        current = client.get("/videos/current").json()
        video = current["video"]
        print(f"  {current['state']:<12} {video['progress']:>3}%")
        if video["status"] in ("completed", "failed", "cancelled"):
            break
        time.sleep(2)

    if video["status"] == "completed":
        print(f"\nDone: {video['video_url']}")
    else:
        error = video.get("error") or {}
        print(f"\n{video['status']}: {error.get('message', '')}")
        if current["can_retry"]:
            print("Retry with:  curl -X POST -H 'X-User-Id: demo-user' http://localhost:8000/videos/current/retry")


if __name__ == "__main__":
    submit(" ".join(sys.argv[1:]) or "A majestic lion walking through the savanna at sunset")
