"""
Load testing script for the rotation API using locust.

Install: pip install -e ".[load]"
Run:     JWT_SECRET_KEY=... locust -f backend/loadtests/locustfile.py --host http://localhost:8000

Listeners poll the current track and send heartbeats for what they hear, so
many of them race to trigger the same advancement at the end of each song.
"""
import os
import random
import uuid

import jwt
from locust import HttpUser, between, task

JWT_SECRET_KEY = os.environ.get("JWT_SECRET_KEY", "change-me-in-production")


def _token(role: str = "listener") -> str:
    return jwt.encode(
        {"sub": str(uuid.uuid4()), "role": role, "type": "access"},
        JWT_SECRET_KEY,
        algorithm="HS256",
    )


class Listener(HttpUser):
    """Simulates one listener following the shared stream."""

    wait_time = between(2, 5)
    weight = 9

    def on_start(self):
        self.headers = {"Authorization": f"Bearer {_token()}"}
        self.epoch = 0
        self.song_id = None

    def _sync(self):
        response = self.client.get("/api/v1/radio/current")
        if response.status_code == 200:
            data = response.json()
            if not data.get("no_content"):
                self.epoch = data["epoch"]
                self.song_id = data["song_id"]

    @task(5)
    def current_track(self):
        self._sync()

    @task(4)
    def heartbeat(self):
        if self.song_id is None:
            self._sync()
            return
        response = self.client.post(
            "/api/v1/radio/heartbeat",
            json={"epoch": self.epoch, "song_id": self.song_id},
            headers=self.headers,
        )
        if response.status_code == 200 and response.json().get("stale"):
            self._sync()

    @task(1)
    def report_outcome(self):
        if self.song_id is None:
            return
        outcome = "skipped" if random.random() < 0.2 else "completed"
        self.client.post(
            "/api/v1/radio/play",
            json={"epoch": self.epoch, "song_id": self.song_id, "outcome": outcome},
            headers=self.headers,
            name="/api/v1/radio/play",
        )
        self._sync()

    @task(1)
    def queue(self):
        self.client.get("/api/v1/radio/queue")


class AdminUser(HttpUser):
    """Simulates an operator watching the stream."""

    wait_time = between(3, 8)
    weight = 1

    def on_start(self):
        self.headers = {"Authorization": f"Bearer {_token('admin')}"}

    @task(3)
    def live_listeners(self):
        self.client.get("/api/v1/radio/listeners/live", headers=self.headers)

    @task(2)
    def decisions(self):
        self.client.get("/api/v1/radio/decisions?limit=20", headers=self.headers)

    @task(1)
    def health_check(self):
        self.client.get("/api/v1/radio/health")
