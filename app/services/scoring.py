"""Lead scoring engine.

Two scoring variants share one output shape:

* customer scoring (customer lifetime value blend): purchase history 40%,
  engagement 25%, demographics 20%, lifecycle 15%, then a market-trend
  multiplier from month-over-month dealership revenue;
* inquiry scoring for standalone inquiries: inquiry type 30%, contact
  completeness 20%, response time 25%, vehicle appeal 15%, timing 10%.

Every factor is normalised to 0-100 before weighting. Each scoring call
inserts a new LeadScore row; earlier rows are never touched.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.database import utcnow
from app.core.exceptions import InvalidJobPayload
from app.models.customer import Customer, Purchase, CustomerTouchpoint, TouchpointType
from app.models.inquiry import Inquiry, InquiryType
from app.models.lead_assignment import Urgency
from app.models.lead_score import LeadScore, QualificationLevel
from app.models.vehicle import Vehicle, FuelType, VehicleStatus
from app.schemas.jobs import JobPriority, UpdateLeadScore
from app.services.queue_runtime import QueueRuntime

logger = logging.getLogger(__name__)

MAX_SCORE = 100.0
BATCH_CHUNK_SIZE = 10

CUSTOMER_WEIGHTS = {
    "purchase_history": 0.40,
    "engagement": 0.25,
    "demographics": 0.20,
    "lifecycle": 0.15,
}

INQUIRY_WEIGHTS = {
    "inquiry_type": 0.30,
    "contact_completeness": 0.20,
    "response_time": 0.25,
    "vehicle_appeal": 0.15,
    "timing": 0.10,
}

TOUCHPOINT_POINTS = {
    TouchpointType.WEBSITE_VISIT: 1,
    TouchpointType.INQUIRY: 5,
    TouchpointType.TEST_DRIVE: 10,
    TouchpointType.EMAIL_OPENED: 2,
    TouchpointType.EMAIL_CLICKED: 3,
}
ENGAGEMENT_WINDOW = 10  # most recent touchpoints considered

INQUIRY_TYPE_SCORES = {
    InquiryType.PURCHASE_INTENT: 90,
    InquiryType.FINANCING: 80,
    InquiryType.TEST_DRIVE: 70,
    InquiryType.TRADE_IN: 60,
    InquiryType.PRICE_INQUIRY: 50,
    InquiryType.GENERAL: 30,
}
DEFAULT_INQUIRY_TYPE_SCORE = 40

# Assignment hand-off per qualification level: (priority, delay seconds, urgency)
ASSIGNMENT_TRIGGERS = {
    QualificationLevel.QUALIFIED: (JobPriority.CRITICAL.value, 0, Urgency.HIGH),
    QualificationLevel.HOT: (JobPriority.HIGH.value, 300, Urgency.MEDIUM),
}

NEXT_ACTIONS = {
    QualificationLevel.QUALIFIED: [
        "Immediate phone call within 1 hour",
        "Schedule in-person meeting",
        "Prepare financing options",
    ],
    QualificationLevel.HOT: [
        "Phone call within 4 hours",
        "Send detailed vehicle information",
        "Offer test drive appointment",
    ],
    QualificationLevel.WARM: [
        "Follow up within 24 hours",
        "Send email with similar vehicles",
        "Add to nurturing campaign",
    ],
    QualificationLevel.COLD: [
        "Add to general email campaign",
        "Send monthly newsletter",
        "Retarget with social media ads",
    ],
}


@dataclass
class ScoreResult:
    total_score: float
    max_possible_score: float
    score_percentage: float
    qualification_level: QualificationLevel
    grade: str
    factors: dict[str, float]
    breakdown: dict[str, float]
    recommendations: list[str] = field(default_factory=list)
    next_actions: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Factor functions (pure)
# ---------------------------------------------------------------------------

def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def classify(percentage: float) -> tuple[QualificationLevel, str]:
    """Qualification level and letter grade for a 0-100 percentage."""
    pct = round(percentage, 2)
    if pct >= 80:
        return QualificationLevel.QUALIFIED, "A"
    if pct >= 60:
        return QualificationLevel.HOT, "B"
    if pct >= 40:
        return QualificationLevel.WARM, "C"
    if pct >= 20:
        return QualificationLevel.COLD, "D"
    return QualificationLevel.COLD, "F"


def purchase_history_score(amounts: list[float], dates: list[datetime], reference: float) -> float:
    """Average purchase value x purchases per 30 days, against ``reference``."""
    if not amounts:
        return 0.0
    average = sum(amounts) / len(amounts)
    frequency = 1.0
    if len(dates) >= 2:
        span_days = (max(dates) - min(dates)).days
        if span_days > 0:
            frequency = len(amounts) / (span_days / 30)
    return _clamp(average * frequency / reference * 100)


def engagement_score(touchpoints: list[TouchpointType]) -> float:
    points = sum(TOUCHPOINT_POINTS.get(t, 1) for t in touchpoints[:ENGAGEMENT_WINDOW])
    return _clamp(points)


def _age(birth_date: date, today: date) -> int:
    return today.year - birth_date.year - ((today.month, today.day) < (birth_date.month, birth_date.day))


def demographic_score(customer: Customer, today: date) -> float:
    score = 50
    if customer.birth_date:
        age = _age(customer.birth_date, today)
        if 25 <= age <= 55:
            score += 20
        elif 18 <= age <= 65:
            score += 10
    if customer.phone:
        score += 5
    if customer.address:
        score += 5
    if customer.email_verified:
        score += 10
    if customer.marketing_opt_in:
        score += 10
    return _clamp(score)


def lifecycle_score(created_at: datetime, now: datetime) -> float:
    days = (now - created_at).days
    if days <= 30:
        return 80
    if days <= 90:
        return 70
    if days <= 180:
        return 60
    if days <= 365:
        return 50
    return 40


def market_multiplier(current_revenue: float, previous_revenue: float) -> float:
    """Month-over-month revenue growth adjustment."""
    if previous_revenue <= 0:
        return 1.0
    growth = (current_revenue - previous_revenue) / previous_revenue
    if growth > 0.1:
        return 1.2
    if growth > 0.05:
        return 1.1
    if growth < -0.1:
        return 0.8
    if growth < -0.05:
        return 0.9
    return 1.0


def inquiry_type_score(inquiry_type) -> float:
    try:
        return INQUIRY_TYPE_SCORES.get(InquiryType(inquiry_type), DEFAULT_INQUIRY_TYPE_SCORE)
    except ValueError:
        return DEFAULT_INQUIRY_TYPE_SCORE


def contact_completeness_score(email: Optional[str], phone: Optional[str], message: Optional[str], name: Optional[str]) -> float:
    score = 0
    if email:
        score += 30
    if phone:
        score += 40
    if message and len(message) > 20:
        score += 20
    if name and len(name.split()) >= 2:
        score += 10
    return _clamp(score)


def response_time_score(created_at: datetime, responded_at: Optional[datetime], now: datetime) -> float:
    """Hours from submission to first response (or to now while unanswered)."""
    hours = ((responded_at or now) - created_at).total_seconds() / 3600
    if hours < 1:
        return 100
    if hours < 24:
        return 80
    if hours < 72:
        return 60
    return 30


def vehicle_appeal_score(vehicle: Optional[Vehicle], market_average: Optional[float], now: datetime) -> float:
    if vehicle is None:
        return 50
    score = 50.0
    if vehicle.fuel_type in (FuelType.HYBRID, FuelType.ELECTRIC):
        score += 15
    if vehicle.mileage is not None and vehicle.mileage < 50000:
        score += 10
    if now.year - vehicle.year <= 3:
        score += 15
    if market_average:
        ratio = float(vehicle.price) / market_average
        if ratio < 0.9:
            score += 10
        elif ratio > 1.1:
            score -= 10
    score += min(20, (vehicle.view_count or 0) / 10)
    score += min(15, (vehicle.inquiry_count or 0) * 5)
    return _clamp(score)


def timing_score(submitted_local: datetime, submitted_at: datetime, now: datetime) -> float:
    """Business-hours and weekday boosts plus a freshness bonus.

    ``submitted_local`` is the submission time in the dealership's timezone;
    freshness is measured on the UTC timestamps.
    """
    score = 50
    hour = submitted_local.hour
    if 9 <= hour <= 17:
        score += 20
    elif 8 <= hour <= 19:
        score += 10
    weekday = submitted_local.weekday()  # Monday=0
    if weekday <= 4:
        score += 15
    elif weekday == 5:
        score += 5
    if now - submitted_at < timedelta(hours=24):
        score += 15
    return _clamp(score)


def _weighted(factors: dict[str, float], weights: dict[str, float]) -> dict[str, float]:
    return {name: round(factors[name] * weight, 4) for name, weight in weights.items()}


def customer_recommendations(factors: dict[str, float], inquiry_count: int) -> list[str]:
    recommendations = []
    if factors["engagement"] < 20:
        recommendations.append("Increase engagement through targeted email campaigns")
        recommendations.append("Send personalized vehicle recommendations")
    if factors["purchase_history"] >= 60:
        recommendations.append("Repeat buyer - offer loyalty pricing and trade-in appraisal")
    if factors["lifecycle"] >= 70:
        recommendations.append("New customer - send welcome offer and showroom invitation")
    if inquiry_count > 2:
        recommendations.append("Multiple inquiries indicate serious interest - expedite follow-up")
    return recommendations


def inquiry_recommendations(factors: dict[str, float], inquiry_type) -> list[str]:
    recommendations = []
    if factors["response_time"] < 70:
        recommendations.append("Follow up immediately - response time is critical for conversion")
    if factors["contact_completeness"] < 60:
        recommendations.append("Request additional contact information for better qualification")
    if factors["inquiry_type"] >= 70:
        recommendations.append("High-intent lead - prioritize for immediate contact")
    if factors["vehicle_appeal"] < 50:
        recommendations.append("Consider highlighting vehicle unique features or value proposition")
    if inquiry_type == InquiryType.FINANCING:
        recommendations.append("Prepare financing options and pre-approval information")
    if inquiry_type == InquiryType.TEST_DRIVE:
        recommendations.append("Schedule test drive appointment within 24 hours")
    return recommendations


def build_result(total: float, factors: dict[str, float], breakdown: dict[str, float], recommendations: list[str]) -> ScoreResult:
    total = round(_clamp(total, 0, MAX_SCORE), 2)
    percentage = round(total / MAX_SCORE * 100, 2)
    level, grade = classify(percentage)
    return ScoreResult(
        total_score=total,
        max_possible_score=MAX_SCORE,
        score_percentage=percentage,
        qualification_level=level,
        grade=grade,
        factors=factors,
        breakdown=breakdown,
        recommendations=recommendations,
        next_actions=list(NEXT_ACTIONS[level]),
    )


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class ScoringEngine:
    def __init__(
        self,
        queue: QueueRuntime,
        clock: Callable[[], datetime] = utcnow,
        purchase_reference: float | None = None,
        business_timezone: str | None = None,
    ):
        self.queue = queue
        self.clock = clock
        self.purchase_reference = purchase_reference or settings.PURCHASE_VALUE_REFERENCE
        self.tz = ZoneInfo(business_timezone or settings.BUSINESS_TIMEZONE)

    def _local(self, moment: datetime) -> datetime:
        return moment.replace(tzinfo=timezone.utc).astimezone(self.tz)

    async def score_customer(self, db: AsyncSession, customer_id: uuid.UUID) -> ScoreResult:
        customer = await db.get(Customer, customer_id)
        if customer is None:
            raise InvalidJobPayload(f"Customer {customer_id} not found")
        now = self.clock()

        purchases = (await db.execute(
            select(Purchase.total_amount, Purchase.created_at).where(Purchase.customer_id == customer_id)
        )).all()
        touchpoints = (await db.execute(
            select(CustomerTouchpoint.touchpoint_type)
            .where(CustomerTouchpoint.customer_id == customer_id)
            .order_by(CustomerTouchpoint.occurred_at.desc())
            .limit(ENGAGEMENT_WINDOW)
        )).scalars().all()
        inquiry_count = await db.scalar(
            select(func.count(Inquiry.id)).where(Inquiry.customer_id == customer_id)
        )

        factors = {
            "purchase_history": purchase_history_score(
                [float(p.total_amount) for p in purchases],
                [p.created_at for p in purchases],
                self.purchase_reference,
            ),
            "engagement": engagement_score(list(touchpoints)),
            "demographics": demographic_score(customer, now.date()),
            "lifecycle": lifecycle_score(customer.created_at, now),
        }
        breakdown = _weighted(factors, CUSTOMER_WEIGHTS)
        multiplier = await self._market_multiplier(db, now)
        breakdown["market_multiplier"] = multiplier

        total = sum(v for k, v in breakdown.items() if k in CUSTOMER_WEIGHTS) * multiplier
        return build_result(total, factors, breakdown, customer_recommendations(factors, inquiry_count or 0))

    async def _market_multiplier(self, db: AsyncSession, now: datetime) -> float:
        async def revenue(start: datetime, end: datetime) -> float:
            total = await db.scalar(
                select(func.coalesce(func.sum(Purchase.total_amount), 0))
                .where(Purchase.created_at >= start, Purchase.created_at < end)
            )
            return float(total or 0)

        current = await revenue(now - timedelta(days=30), now)
        previous = await revenue(now - timedelta(days=60), now - timedelta(days=30))
        return market_multiplier(current, previous)

    async def score_inquiry(self, db: AsyncSession, inquiry_id: uuid.UUID) -> ScoreResult:
        inquiry = await db.get(Inquiry, inquiry_id)
        if inquiry is None:
            raise InvalidJobPayload(f"Inquiry {inquiry_id} not found")
        if inquiry.customer_id:
            return await self.score_customer(db, inquiry.customer_id)

        now = self.clock()
        vehicle = await db.get(Vehicle, inquiry.vehicle_id) if inquiry.vehicle_id else None
        market_average = await self._vehicle_market_average(db, vehicle) if vehicle else None

        factors = {
            "inquiry_type": inquiry_type_score(inquiry.inquiry_type),
            "contact_completeness": contact_completeness_score(
                inquiry.email, inquiry.phone, inquiry.message, inquiry.name
            ),
            "response_time": response_time_score(inquiry.created_at, inquiry.responded_at, now),
            "vehicle_appeal": vehicle_appeal_score(vehicle, market_average, now),
            "timing": timing_score(self._local(inquiry.created_at), inquiry.created_at, now),
        }
        breakdown = _weighted(factors, INQUIRY_WEIGHTS)
        total = sum(breakdown.values())
        return build_result(total, factors, breakdown, inquiry_recommendations(factors, inquiry.inquiry_type))

    async def _vehicle_market_average(self, db: AsyncSession, vehicle: Vehicle) -> Optional[float]:
        average = await db.scalar(
            select(func.avg(Vehicle.price)).where(
                Vehicle.make == vehicle.make,
                Vehicle.model == vehicle.model,
                Vehicle.year.between(vehicle.year - 2, vehicle.year + 2),
                Vehicle.status == VehicleStatus.AVAILABLE,
                Vehicle.id != vehicle.id,
            )
        )
        return float(average) if average else None

    async def record(
        self,
        db: AsyncSession,
        result: ScoreResult,
        customer_id: uuid.UUID | None = None,
        inquiry_id: uuid.UUID | None = None,
        incremental: bool = False,
        reason: str | None = None,
    ) -> LeadScore:
        """Insert a new LeadScore row for ``result``. Caller commits."""
        row = LeadScore(
            customer_id=customer_id,
            inquiry_id=inquiry_id,
            total_score=result.total_score,
            max_possible_score=result.max_possible_score,
            score_percentage=result.score_percentage,
            qualification_level=result.qualification_level,
            grade=result.grade,
            breakdown=result.breakdown,
            recommendations=result.recommendations,
            next_actions=result.next_actions,
            incremental_update=incremental,
            update_reason=reason,
            calculated_at=self.clock(),
        )
        db.add(row)
        await db.flush()
        return row

    async def latest_score(
        self,
        db: AsyncSession,
        customer_id: uuid.UUID | None = None,
        inquiry_id: uuid.UUID | None = None,
    ) -> Optional[LeadScore]:
        query = select(LeadScore)
        if customer_id:
            query = query.where(LeadScore.customer_id == customer_id)
        else:
            query = query.where(LeadScore.inquiry_id == inquiry_id)
        result = await db.execute(
            query.order_by(LeadScore.calculated_at.desc(), LeadScore.created_at.desc()).limit(1)
        )
        return result.scalar_one_or_none()

    async def score_and_queue(
        self,
        db: AsyncSession,
        customer_id: uuid.UUID | None = None,
        inquiry_id: uuid.UUID | None = None,
        reason: str | None = None,
    ) -> dict:
        """Score a lead, persist the score and hand QUALIFIED/HOT leads to assignment."""
        inquiry = None
        if inquiry_id:
            inquiry = await db.get(Inquiry, inquiry_id)
            if inquiry is None:
                raise InvalidJobPayload(f"Inquiry {inquiry_id} not found")
            customer_id = customer_id or inquiry.customer_id
            result = await self.score_inquiry(db, inquiry_id)
        elif customer_id:
            result = await self.score_customer(db, customer_id)
        else:
            raise InvalidJobPayload("customer_id or inquiry_id is required")

        score = await self.record(db, result, customer_id=customer_id, inquiry_id=inquiry_id, reason=reason)
        assignment_queued = await self._queue_assignment(db, result, customer_id, inquiry)

        await db.commit()
        logger.info(
            "Scored lead customer=%s inquiry=%s: %.2f%% (%s)%s",
            customer_id,
            inquiry_id,
            result.score_percentage,
            result.qualification_level.value,
            "; assignment queued" if assignment_queued else "",
        )
        return {
            "score_id": score.id,
            "score": result.score_percentage,
            "qualification_level": result.qualification_level.value,
            "grade": result.grade,
            "assignment_queued": assignment_queued,
        }

    async def _queue_assignment(
        self,
        db: AsyncSession,
        result: ScoreResult,
        customer_id: uuid.UUID | None,
        inquiry: Inquiry | None = None,
    ) -> bool:
        """Enqueue ``assign_lead`` for QUALIFIED/HOT results. Caller commits."""
        trigger = ASSIGNMENT_TRIGGERS.get(result.qualification_level)
        if not trigger:
            return False
        priority, delay, urgency = trigger
        criteria = await self._assignment_criteria(db, customer_id, inquiry)
        await self.queue.add(
            "assign_lead",
            {
                "customerId": customer_id,
                "inquiryId": inquiry.id if inquiry is not None else None,
                "leadScore": result.score_percentage,
                "urgency": urgency.value,
                "source": "lead_scoring",
                **criteria,
            },
            priority=priority,
            delay=delay,
            db=db,
        )
        return True

    async def _assignment_criteria(self, db: AsyncSession, customer_id, inquiry: Inquiry | None) -> dict:
        criteria: dict = {}
        if inquiry is not None and inquiry.vehicle_id:
            vehicle = await db.get(Vehicle, inquiry.vehicle_id)
            if vehicle is not None:
                criteria["vehicleType"] = vehicle.body_type
                price = float(vehicle.price)
                criteria["priceRange"] = {"min": price, "max": price}
        if customer_id:
            customer = await db.get(Customer, customer_id)
            if customer is not None and customer.preferred_locale:
                criteria["language"] = customer.preferred_locale
        return {k: v for k, v in criteria.items() if v is not None}

    async def batch_score(self, db: AsyncSession, customer_ids: list[uuid.UUID], reason: str | None = None) -> dict:
        """Score many customers in chunks; one failure does not stop the batch."""
        scored, failed, assignments = 0, 0, 0
        for offset in range(0, len(customer_ids), BATCH_CHUNK_SIZE):
            for customer_id in customer_ids[offset:offset + BATCH_CHUNK_SIZE]:
                try:
                    result = await self.score_customer(db, customer_id)
                    await self.record(db, result, customer_id=customer_id, reason=reason)
                    if await self._queue_assignment(db, result, customer_id):
                        assignments += 1
                    scored += 1
                except Exception as e:
                    logger.error("Failed to score customer %s: %s", customer_id, e)
                    failed += 1
            await db.commit()
        logger.info(
            "Batch scoring complete: %d scored, %d failed, %d assignment(s) queued", scored, failed, assignments
        )
        return {"scored": scored, "failed": failed, "total": len(customer_ids), "assignments_queued": assignments}

    async def _find_customer(self, db: AsyncSession, payload: UpdateLeadScore) -> Optional[Customer]:
        if payload.customer_id:
            return await db.get(Customer, payload.customer_id)
        query = select(Customer)
        if payload.email:
            query = query.where(func.lower(Customer.email) == payload.email.strip().lower())
        else:
            query = query.where(Customer.phone == payload.phone)
        result = await db.execute(query.order_by(Customer.created_at).limit(1))
        return result.scalar_one_or_none()

    async def apply_score_delta(self, db: AsyncSession, payload: UpdateLeadScore) -> dict:
        """Adjust the latest score by ``payload.points`` after a behavioural event."""
        customer = await self._find_customer(db, payload)
        if customer is None:
            logger.warning("Score update for unknown customer (action=%s)", payload.action)
            return {"updated": False, "reason": "customer_not_found"}

        latest = await self.latest_score(db, customer_id=customer.id)
        if latest is None:
            await self.queue.add(
                "calculate_lead_score",
                {"customerId": customer.id, "reason": f"Initial calculation triggered by {payload.action}"},
                priority=JobPriority.HIGH.value,
                db=db,
            )
            await db.commit()
            return {"updated": False, "reason": "no_existing_score", "full_calculation_queued": True}

        total = min(latest.max_possible_score, max(0.0, latest.total_score + payload.points))
        percentage = round(total / latest.max_possible_score * 100, 2)
        level, grade = classify(percentage)

        row = LeadScore(
            customer_id=customer.id,
            total_score=round(total, 2),
            max_possible_score=latest.max_possible_score,
            score_percentage=percentage,
            qualification_level=level,
            grade=grade,
            breakdown={**(latest.breakdown or {}), f"action:{payload.action}": payload.points},
            recommendations=list(latest.recommendations or []),
            next_actions=list(NEXT_ACTIONS[level]),
            incremental_update=True,
            update_reason=f"{payload.action}: {payload.points:+g} points",
            calculated_at=self.clock(),
        )
        db.add(row)

        newly_qualified = (
            level == QualificationLevel.QUALIFIED
            and latest.qualification_level != QualificationLevel.QUALIFIED
        )
        if newly_qualified:
            await self.queue.add(
                "assign_lead",
                {
                    "customerId": customer.id,
                    "leadScore": percentage,
                    "urgency": Urgency.HIGH.value,
                    "source": "score_update",
                },
                priority=JobPriority.CRITICAL.value,
                db=db,
            )

        await db.commit()
        logger.info(
            "Score for customer %s: %.2f -> %.2f (%s)",
            customer.id,
            latest.total_score,
            total,
            payload.action,
        )
        return {
            "updated": True,
            "previous_score": latest.total_score,
            "new_score": round(total, 2),
            "qualification_level": level.value,
            "assignment_queued": newly_qualified,
        }
