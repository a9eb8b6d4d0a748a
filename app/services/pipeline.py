"""Wires the queue runtime, engines, transports and queue workers together."""

import random
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from app.core.database import utcnow
from app.services.assignment import AssignmentEngine
from app.services.campaigns import CampaignDispatcher
from app.services.email_service import EmailService
from app.services.follow_up import FollowUpScheduler
from app.services.notification_service import NotificationService
from app.services.personalization import DealershipIdentity, PersonalizationEngine
from app.services.queue_runtime import QueueRuntime
from app.services.scoring import ScoringEngine
from app.services.sms import SmsService
from app.workers.email_worker import EmailWorker
from app.workers.lead_worker import LeadWorker
from app.workers.sms_worker import SmsWorker


@dataclass
class Pipeline:
    queue: QueueRuntime
    personalization: PersonalizationEngine
    notifications: NotificationService
    follow_ups: FollowUpScheduler
    scoring: ScoringEngine
    assignments: AssignmentEngine
    dispatcher: CampaignDispatcher


def build_pipeline(
    queue: Optional[QueueRuntime] = None,
    email_transport: Optional[EmailService] = None,
    sms_transport: Optional[SmsService] = None,
    rng: Optional[random.Random] = None,
    clock: Callable[[], datetime] = utcnow,
    identity: Optional[DealershipIdentity] = None,
) -> Pipeline:
    """Build every component around one queue and register the job handlers."""
    queue = queue or QueueRuntime(clock=clock)
    identity = identity or DealershipIdentity.from_settings()

    personalization = PersonalizationEngine(identity, clock=clock)
    notifications = NotificationService(queue, identity)
    follow_ups = FollowUpScheduler(queue, notifications, clock=clock)
    scoring = ScoringEngine(queue, clock=clock)
    assignments = AssignmentEngine(queue, follow_ups, notifications, clock=clock)
    dispatcher = CampaignDispatcher(queue, personalization, rng=rng, clock=clock)

    EmailWorker(queue, email_transport or EmailService(), dispatcher, personalization).register()
    SmsWorker(queue, sms_transport or SmsService(), dispatcher, personalization).register()
    LeadWorker(queue, scoring, assignments, follow_ups).register()

    return Pipeline(
        queue=queue,
        personalization=personalization,
        notifications=notifications,
        follow_ups=follow_ups,
        scoring=scoring,
        assignments=assignments,
        dispatcher=dispatcher,
    )
