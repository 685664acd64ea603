from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.logging import get_logger
from app.models.credit import MerchantCredits, MerchantPlan, RequestType, UsageLog

logger = get_logger(__name__)

FREE_PLAN_NAME = "Free"
USER_MESSAGE_LOG_CHARS = 100


def default_plans() -> List[Dict[str, Any]]:
    return [
        {
            "name": FREE_PLAN_NAME,
            "monthly_credits": settings.FREE_PLAN_MONTHLY_CREDITS,
            "max_concurrent_chats": 2,
            "price": 0.0,
            "features": {
                "aiResponses": True,
                "basicAnalytics": True,
                "emailSupport": False,
                "customBranding": False,
            },
        },
        {
            "name": "Basic",
            "monthly_credits": 5000,
            "max_concurrent_chats": 10,
            "price": 29.0,
            "features": {
                "aiResponses": True,
                "basicAnalytics": True,
                "emailSupport": True,
                "customBranding": False,
                "prioritySupport": False,
            },
        },
        {
            "name": "Pro",
            "monthly_credits": 20000,
            "max_concurrent_chats": 50,
            "price": 99.0,
            "features": {
                "aiResponses": True,
                "advancedAnalytics": True,
                "emailSupport": True,
                "customBranding": True,
                "prioritySupport": True,
                "customIntegrations": True,
            },
        },
        {
            "name": "Enterprise",
            "monthly_credits": 100000,
            "max_concurrent_chats": 200,
            "price": 299.0,
            "features": {
                "aiResponses": True,
                "advancedAnalytics": True,
                "emailSupport": True,
                "customBranding": True,
                "prioritySupport": True,
                "customIntegrations": True,
                "dedicatedSupport": True,
                "sla": True,
            },
        },
    ]


@dataclass
class CreditCheckResult:
    has_credits: bool
    remaining_credits: float
    can_process_request: bool
    reason: Optional[str] = None
    should_handoff: bool = False


@dataclass
class UsageMetrics:
    credits_used: float
    request_type: RequestType
    was_successful: bool
    tokens_used: Optional[int] = None
    response_time: Optional[int] = None
    error_message: Optional[str] = None


def add_one_month(value: datetime) -> datetime:
    year = value.year + value.month // 12
    month = value.month % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _check_current(credits: MerchantCredits) -> CreditCheckResult:
    remaining = float(credits.remaining_credits or 0.0)
    if not credits.ai_enabled:
        return CreditCheckResult(
            has_credits=False,
            remaining_credits=remaining,
            can_process_request=False,
            reason="AI manually disabled by merchant",
            should_handoff=True,
        )
    if remaining <= 0:
        return CreditCheckResult(
            has_credits=False,
            remaining_credits=0.0,
            can_process_request=False,
            reason="Credits exhausted for current billing period",
            should_handoff=True,
        )
    return CreditCheckResult(has_credits=True, remaining_credits=remaining, can_process_request=True)


class CreditService:
    """Per-shop credit ledger. Checked before any paid work, recorded once per request."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _get_credits(self, shop: str) -> Optional[MerchantCredits]:
        result = await self.db.execute(select(MerchantCredits).where(MerchantCredits.shop == shop))
        return result.scalars().first()

    async def get_or_create_free_plan(self) -> MerchantPlan:
        result = await self.db.execute(select(MerchantPlan).where(MerchantPlan.name == FREE_PLAN_NAME))
        plan = result.scalars().first()
        if plan is None:
            plan = MerchantPlan(**default_plans()[0])
            self.db.add(plan)
            await self.db.flush()
        return plan

    async def create_default_plans(self) -> List[MerchantPlan]:
        """Upsert the plan catalogue by name."""
        plans = []
        for data in default_plans():
            result = await self.db.execute(select(MerchantPlan).where(MerchantPlan.name == data["name"]))
            plan = result.scalars().first()
            if plan is None:
                plan = MerchantPlan(**data)
                self.db.add(plan)
            else:
                for key, value in data.items():
                    setattr(plan, key, value)
            plans.append(plan)
        await self.db.commit()
        return plans

    async def _create_merchant_credits(self, shop: str, plan: MerchantPlan) -> MerchantCredits:
        now = datetime.now(timezone.utc)
        credits = MerchantCredits(
            shop=shop,
            plan_id=plan.id,
            total_credits=float(plan.monthly_credits),
            used_credits=0.0,
            remaining_credits=float(plan.monthly_credits),
            period_start=now,
            period_end=add_one_month(now),
            ai_enabled=True,
            auto_recharge=True,
            total_requests=0,
            total_users=0,
        )
        self.db.add(credits)
        await self.db.commit()
        return credits

    async def _reset_billing_period(self, credits: MerchantCredits) -> None:
        now = datetime.now(timezone.utc)
        plan = await self.db.get(MerchantPlan, credits.plan_id)
        monthly = float(plan.monthly_credits)
        credits.total_credits = monthly
        credits.used_credits = 0.0
        credits.remaining_credits = monthly
        credits.period_start = now
        credits.period_end = add_one_month(now)
        credits.total_requests = 0
        credits.total_users = 0
        await self.db.commit()

    async def check_credits_available(self, shop: str) -> CreditCheckResult:
        try:
            credits = await self._get_credits(shop)
            if credits is None:
                plan = await self.get_or_create_free_plan()
                await self._create_merchant_credits(shop, plan)
                return CreditCheckResult(
                    has_credits=True,
                    remaining_credits=float(plan.monthly_credits),
                    can_process_request=True,
                    reason="New merchant - assigned to free plan",
                )

            if datetime.now(timezone.utc) > _as_utc(credits.period_end):
                await self._reset_billing_period(credits)
            return _check_current(credits)
        except Exception as e:
            logger.error(f"Error checking credits for {shop}: {e}")
            await self.db.rollback()
            return CreditCheckResult(
                has_credits=False,
                remaining_credits=0.0,
                can_process_request=False,
                reason="Credit check failed",
                should_handoff=True,
            )

    async def record_usage(
        self,
        shop: str,
        metrics: UsageMetrics,
        session_id: Optional[str] = None,
        customer_id: Optional[str] = None,
        user_message: Optional[str] = None,
    ) -> None:
        """Append a usage log. Only successful requests draw down the balance. Never raises."""
        try:
            credits = await self._get_credits(shop)
            if credits is None:
                logger.warning(f"No credit record found for shop: {shop}")
                return

            first_request_from_customer = False
            if metrics.was_successful and customer_id:
                first_request_from_customer = not await self._customer_seen_this_period(credits, customer_id)

            self.db.add(
                UsageLog(
                    shop=shop,
                    merchant_credits_id=credits.id,
                    request_type=metrics.request_type.value,
                    credits_used=max(0.0, float(metrics.credits_used)),
                    tokens_used=metrics.tokens_used,
                    response_time=metrics.response_time,
                    session_id=session_id,
                    customer_id=customer_id,
                    user_message=user_message[:USER_MESSAGE_LOG_CHARS] if user_message else None,
                    was_successful=metrics.was_successful,
                    error_message=metrics.error_message,
                    created_at=datetime.now(timezone.utc),
                )
            )

            if metrics.was_successful:
                used = max(0.0, float(metrics.credits_used))
                # Increments run in SQL; overlapping requests share this row
                values = {
                    "used_credits": MerchantCredits.used_credits + used,
                    "remaining_credits": MerchantCredits.remaining_credits - used,
                    "total_requests": MerchantCredits.total_requests + 1,
                }
                if first_request_from_customer:
                    values["total_users"] = MerchantCredits.total_users + 1
                await self.db.execute(
                    update(MerchantCredits)
                    .where(MerchantCredits.id == credits.id)
                    .values(**values)
                    .execution_options(synchronize_session="fetch")
                )

            await self.db.commit()
        except Exception as e:
            logger.error(f"Error recording usage for {shop}: {e}")
            await self.db.rollback()

    async def _customer_seen_this_period(self, credits: MerchantCredits, customer_id: str) -> bool:
        count = await self.db.scalar(
            select(func.count())
            .select_from(UsageLog)
            .where(
                UsageLog.merchant_credits_id == credits.id,
                UsageLog.customer_id == customer_id,
                UsageLog.created_at >= credits.period_start,
            )
        )
        return bool(count)
