"""Scheduled job trigger scenarios.

SchedulerUser plays the external cron: it triggers the billing jobs with
the bearer secret and polls the health endpoint the way uptime monitoring
does. Job triggers share a per-client rate limit, so 429s are counted,
not failed.
"""

import random

from locust import HttpUser, between, task

from loadtests.data_generators import cron_headers
from loadtests.helpers.response import extract_error_detail
from loadtests.helpers.state import SchedulerState

JOB_WEIGHTS = {
    "process-due": 3,
    "retry-payments": 3,
    "retry-webhooks": 2,
    "expire": 1,
    "cleanup-webhooks": 1,
}


class SchedulerUser(HttpUser):
    """Cron-style job triggers plus health polling."""

    wait_time = between(2, 6)

    def on_start(self):
        self.state = SchedulerState()

    @task(3)
    def trigger_job(self):
        job = random.choices(list(JOB_WEIGHTS), weights=list(JOB_WEIGHTS.values()))[0]
        with self.client.post(
            f"/billing/jobs/{job}",
            headers=cron_headers(),
            catch_response=True,
            name="POST /billing/jobs/{name}",
        ) as resp:
            if resp.status_code == 200:
                self.state.runs[job] = self.state.runs.get(job, 0) + 1
            elif resp.status_code == 429:
                self.state.rate_limited += 1
                resp.success()
            else:
                resp.failure(f"Job {job} failed: {resp.status_code} - {extract_error_detail(resp)}")

    @task(5)
    def poll_health(self):
        with self.client.get("/billing/health", catch_response=True, name="GET /billing/health") as resp:
            if resp.status_code != 200:
                resp.failure(f"Health failed: {resp.status_code} - {extract_error_detail(resp)}")
                return
            self.state.last_health = resp.json().get("status")
