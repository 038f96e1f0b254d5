"""Apply a recorded webhook event: dispatch and mark processed in one unit of work."""

from datetime import datetime

from protean.fields import DateTime, Integer, String
from protean.utils.globals import current_domain
from protean.utils.mixins import handle

from billing.domain import billing
from billing.webhook.handlers import WebhookContext, dispatch
from billing.webhook.webhook_event import WebhookEvent


@billing.command(part_of="WebhookEvent")
class ApplyWebhookEvent:
    event_id = String(required=True, max_length=255)
    applied_at = DateTime(required=True)
    timezone = String(required=True, max_length=64)
    max_attempts = Integer(default=3)
    grace_period_days = Integer(default=3)


@billing.command_handler(part_of=WebhookEvent)
class ApplyWebhookEventHandler:
    @handle(ApplyWebhookEvent)
    def apply_webhook_event(self, command: ApplyWebhookEvent):
        repo = current_domain.repository_for(WebhookEvent)
        event = repo.get(command.event_id)
        if event.processed:
            return False

        context = WebhookContext(
            as_of=command.applied_at,
            timezone=command.timezone,
            max_attempts=command.max_attempts,
            grace_period_days=command.grace_period_days,
        )
        dispatch(event.event_type, event.data, context)

        event.mark_processed(at=command.applied_at)
        repo.add(event)
        return True


def apply_webhook_event(services, event_id: str, as_of: datetime) -> bool:
    """True if this call applied the event, False if it was already processed."""
    settings = services.settings
    return current_domain.process(
        ApplyWebhookEvent(
            event_id=event_id,
            applied_at=as_of,
            timezone=settings.timezone,
            max_attempts=settings.max_attempts,
            grace_period_days=settings.grace_period_days,
        ),
        asynchronous=False,
    )


def record_webhook_failure(event_id: str, error: BaseException, count_retry: bool) -> None:
    repo = current_domain.repository_for(WebhookEvent)
    event = repo.get(event_id)
    event.record_failure(f"{type(error).__name__}: {error}", count_retry=count_retry)
    repo.add(event)
