"""Mixed billing workload scenario.

Combines gateway callbacks and scheduler traffic with weights that model
a billing day: a steady stream of webhooks, a handful of job triggers and
constant health polling. This is the recommended scenario for load
baseline testing.
"""

from locust import HttpUser, between

from loadtests.helpers.state import SchedulerState
from loadtests.scenarios.scheduler import SchedulerUser
from loadtests.scenarios.webhooks import PaymentLifecycleJourney


class MixedWorkloadUser(HttpUser):
    """Realistic mixed workload.

    Webhooks (85%):
    - Done -> redelivered -> cancelled journeys

    Scheduler (15%):
    - Job triggers with the bearer secret
    - Health polling
    """

    wait_time = between(1, 3)
    tasks = {
        PaymentLifecycleJourney: 85,
        SchedulerUser.trigger_job: 5,
        SchedulerUser.poll_health: 10,
    }

    def on_start(self):
        self.state = SchedulerState()
