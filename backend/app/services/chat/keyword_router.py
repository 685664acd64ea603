from __future__ import annotations

import random
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.logging import get_logger
from app.models.ai_settings import AISettings
from app.models.product import Product
from app.schemas.ai_settings import POLICY_LABELS, AISettingsConfig
from app.services.catalog.catalog_repository import CatalogRepository
from app.services.chat.intent_classifier import IntentClassifier, IntentType
from app.services.chat.text_normalizer import normalize_typo
from app.utils.shop import store_name_from_shop

logger = get_logger(__name__)

PRONOUN_PATTERN = re.compile(r"\b(it|that|them|those|this|one|ones)\b", re.IGNORECASE)

GENERIC_NOUNS = {"item", "items", "product", "products", "stuff", "thing", "things", "goods", "inventory"}

PRICE_KEYWORDS = (
    "cheap", "cheapest", "expensive", "cost", "price", "budget", "under", "below",
    "above", "over", "affordable", "lowest", "highest",
)
PREMIUM_KEYWORDS = ("expensive", "premium", "luxury")

BEST_SELLER_KEYWORDS = (
    "best seller", "bestseller", "best selling", "popular", "top selling", "most bought",
    "most sold", "trending", "hot", "recommended", "most popular", "top products",
    "customer favorites", "fan favorites", "what sells most", "most ordered", "top picks",
    "customer choice",
)

NEW_ARRIVAL_KEYWORDS = (
    "new arrival", "new product", "latest", "newest", "just arrived", "recently added",
    "fresh", "what's new",
)

GREETING_REPLIES = (
    "Hello! How can I help you today? 😊",
    "Hi there! What can I help you find?",
    "Hey! I'm here to help. What are you looking for?",
    "Welcome! How can I assist you today?",
    "Hi! What can I help you with?",
)

COMPLIMENT_REPLIES = (
    "Thank you so much! 😊 We really appreciate your kind words and are thrilled to help you!",
    "That means a lot to us! Thank you for the wonderful feedback! 😊",
    "You're so kind! We're here to make your shopping experience the best it can be!",
    "Thank you! We're grateful for your support and happy to assist you! 😊",
    "That's so nice of you to say! We truly appreciate it and are here whenever you need us!",
)

ADD_TO_CART_REPLY = (
    "I cannot add items to the cart for you directly. To add an item to your cart:\n\n"
    "1. **Click on the product** you're interested in to view its product page\n"
    "2. **Select your options** (size, color, quantity, etc.) if applicable\n"
    "3. **Click the 'Add to Cart' button** on the product page\n"
    "4. You can continue shopping or proceed to checkout\n\n"
    "If you need help finding a specific product or have questions about an item, I'm happy to help! 😊"
)

POLICY_MAX_CHARS = 400

COST_SMALL_TALK = 0.1
COST_ORDER_OR_CART = 0.2
COST_POLICY = 0.3
COST_CATALOG_EMPTY = 0.3
COST_CATALOG = 0.5


@dataclass
class KeywordResponse:
    is_keyword_match: bool
    credits_used: float = 0.0
    response: Optional[str] = None
    product_data: Optional[List[Dict[str, Any]]] = None
    bypass_ai: bool = False
    intent: Optional[IntentType] = None
    meta: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def defer(cls, intent: Optional[IntentType] = None) -> "KeywordResponse":
        return cls(is_keyword_match=False, credits_used=0.0, intent=intent)


def has_pronoun(message: str) -> bool:
    return bool(PRONOUN_PATTERN.search(message or ""))


def is_price_query(message: str) -> bool:
    lower = message.lower()
    return any(keyword in lower for keyword in PRICE_KEYWORDS)


def is_best_seller_query(message: str) -> bool:
    lower = message.lower()
    return any(keyword in lower for keyword in BEST_SELLER_KEYWORDS)


def is_new_arrivals_query(message: str) -> bool:
    lower = message.lower()
    if "fresh fruit" in lower:
        return False
    return any(keyword in lower for keyword in NEW_ARRIVAL_KEYWORDS)


def has_generic_noun(message: str) -> bool:
    return any(word.lower() in GENERIC_NOUNS for word in message.split())


def truncate_policy(text: str, max_chars: int = POLICY_MAX_CHARS) -> str:
    """Cut long policy text, preferring a sentence end in the last 100 characters."""
    content = text.strip()
    if len(content) <= max_chars:
        return content
    truncated = content[:max_chars]
    last_period = truncated.rfind(".")
    if last_period > max_chars - 100:
        return truncated[: last_period + 1]
    return truncated + "..."


def _product_payload(products: Sequence[Product]) -> List[Dict[str, Any]]:
    return [
        {
            "id": p.prod_id,
            "title": p.title,
            "price": p.price,
            "handle": p.handle or None,
            "image": p.image or None,
        }
        for p in products
    ]


def _numbered_list(products: Sequence[Product]) -> str:
    return "\n".join(f"{i}. **{p.title}** - ${p.price}" for i, p in enumerate(products, start=1))


def _order_status_reply(store_name: str) -> str:
    return (
        "I'd be happy to help you check your order status! 😊\n\n"
        f"**Here's how you can track your order from {store_name}:**\n\n"
        "1. **Check your email** - You should have received an order confirmation email with your order number and a tracking link.\n\n"
        "2. **Visit your account** - If you created an account, log in to your account on our website to view all your orders and their current status.\n\n"
        "3. **Use the tracking link** - Click the tracking link in your confirmation email to see real-time updates from the shipping carrier.\n\n"
        "4. **Contact support** - If you can't find your order confirmation or need additional help, please contact our support team with your order number or the email address you used for your purchase.\n\n"
        "**Need your order number?** It's usually in the format like #12345 and can be found in:\n"
        "• Your order confirmation email\n"
        "• Your account order history\n"
        "• Your receipt (if you received one)\n\n"
        "Is there anything else I can help you with regarding your order?"
    )


def _policies_unavailable_reply(store_name: str) -> str:
    return (
        f"I'd love to help you with our store policies! 😊 While I'm getting the detailed policy information ready, "
        f"I can tell you that {store_name} is committed to providing excellent customer service.\n\n"
        "For the most up-to-date information about our shipping, returns, and other policies, please feel free to "
        "contact our support team or check our website. Is there anything specific about our policies you'd like "
        "to know? I'm here to help!"
    )


class KeywordRouter:
    """Deterministic fast path. Answers only when the reply needs no conversation context."""

    def __init__(self, db: AsyncSession, *, rng: Optional[random.Random] = None):
        self.db = db
        self.catalog = CatalogRepository(db)
        self._rng = rng or random.Random()

    async def load_ai_settings(self, shop: str) -> AISettingsConfig:
        result = await self.db.execute(select(AISettings).where(AISettings.shop == shop))
        record = result.scalars().first()
        return AISettingsConfig.from_raw(record.settings if record else None, shop=shop)

    async def route(self, shop: str, user_message: str) -> KeywordResponse:
        message = normalize_typo(user_message)

        # Stateless replies cannot resolve "it"/"that", let the model use history
        if has_pronoun(message):
            return KeywordResponse.defer()

        classification = IntentClassifier.classify(message)
        intent = classification.intent

        if intent == IntentType.COMPLIMENT:
            return self._canned(COMPLIMENT_REPLIES, intent)
        if intent == IntentType.GREETING:
            return self._canned(GREETING_REPLIES, intent)
        if intent == IntentType.POLICY_QUERY:
            return await self.handle_policy_query(shop, message, classification.policy_type)
        if intent == IntentType.ORDER_STATUS:
            return await self.handle_order_status(shop)
        if intent == IntentType.ADD_TO_CART:
            return KeywordResponse(
                is_keyword_match=True,
                response=ADD_TO_CART_REPLY,
                bypass_ai=True,
                credits_used=COST_ORDER_OR_CART,
                intent=intent,
            )
        if intent == IntentType.PRODUCT_QUERY:
            return await self.handle_product_query(shop, message)
        return KeywordResponse.defer(intent)

    def _canned(self, pool: Sequence[str], intent: IntentType) -> KeywordResponse:
        return KeywordResponse(
            is_keyword_match=True,
            response=self._rng.choice(pool),
            bypass_ai=True,
            credits_used=COST_SMALL_TALK,
            intent=intent,
        )

    async def handle_product_query(self, shop: str, message: str) -> KeywordResponse:
        if is_price_query(message):
            # "cheap jewelry" needs semantic search, "cheap items" is a plain price sort
            try:
                has_category = await self.catalog.contains_category(shop, message)
            except Exception as e:
                logger.error(f"Category lookup failed for {shop}: {e}")
                has_category = False
            if has_category and not has_generic_noun(message):
                return KeywordResponse.defer(IntentType.PRODUCT_QUERY)
            return await self.handle_price_query(shop, message)

        if is_best_seller_query(message):
            return await self.handle_best_sellers(shop)
        if is_new_arrivals_query(message):
            return await self.handle_new_arrivals(shop)
        return KeywordResponse.defer(IntentType.PRODUCT_QUERY)

    async def handle_price_query(self, shop: str, message: str) -> KeywordResponse:
        descending = any(keyword in message for keyword in PREMIUM_KEYWORDS)
        try:
            products = await self.catalog.products_by_price(shop, descending=descending, limit=5)
        except Exception as e:
            logger.error(f"Price query failed for {shop}: {e}")
            return KeywordResponse.defer(IntentType.PRODUCT_QUERY)

        if not products:
            return KeywordResponse(
                is_keyword_match=True,
                response="I don't have any products to show you right now. Please check back later!",
                bypass_ai=True,
                credits_used=COST_CATALOG,
                intent=IntentType.PRODUCT_QUERY,
            )

        label = "premium" if descending else "most affordable"
        response = (
            f"Here are our {label} products:\n\n"
            + _numbered_list(products)
            + "\n\nWould you like more details about any of these products?"
        )
        return KeywordResponse(
            is_keyword_match=True,
            response=response,
            product_data=_product_payload(products),
            bypass_ai=True,
            credits_used=COST_CATALOG,
            intent=IntentType.PRODUCT_QUERY,
            meta={"sort": "price_desc" if descending else "price_asc"},
        )

    async def handle_best_sellers(self, shop: str) -> KeywordResponse:
        try:
            result = await self.catalog.best_sellers(shop, window_days=90, limit=8)
        except Exception as e:
            logger.error(f"Best seller query failed for {shop}: {e}")
            return KeywordResponse.defer(IntentType.PRODUCT_QUERY)

        if not result.has_catalog:
            return KeywordResponse(
                is_keyword_match=True,
                response="We're still setting up our product catalog. Please check back soon for our best-selling items!",
                bypass_ai=True,
                credits_used=COST_CATALOG_EMPTY,
                intent=IntentType.PRODUCT_QUERY,
            )
        if not result.items:
            return KeywordResponse(
                is_keyword_match=True,
                response="We're just getting started! Check back soon to see our best-selling products as customers start shopping!",
                bypass_ai=True,
                credits_used=COST_CATALOG_EMPTY,
                intent=IntentType.PRODUCT_QUERY,
            )

        products = [item.product for item in result.items]
        heading = "Here are our best-selling products"
        if result.all_time_fallback:
            heading += " (based on all-time sales)"
        response = (
            f"{heading}:\n\n{_numbered_list(products[:6])}\n\n"
            "These are customer favorites! Would you like more details about any of these products?"
        )
        return KeywordResponse(
            is_keyword_match=True,
            response=response,
            product_data=_product_payload(products),
            bypass_ai=True,
            credits_used=COST_CATALOG,
            intent=IntentType.PRODUCT_QUERY,
            meta={"all_time_fallback": result.all_time_fallback},
        )

    async def handle_new_arrivals(self, shop: str) -> KeywordResponse:
        try:
            products = await self.catalog.newest_products(shop, limit=6)
        except Exception as e:
            logger.error(f"New arrivals query failed for {shop}: {e}")
            return KeywordResponse.defer(IntentType.PRODUCT_QUERY)

        if not products:
            return KeywordResponse(
                is_keyword_match=True,
                response="We're working on adding new products! Check back soon for our latest arrivals!",
                bypass_ai=True,
                credits_used=COST_CATALOG_EMPTY,
                intent=IntentType.PRODUCT_QUERY,
            )

        response = (
            f"Here are our newest products:\n\n{_numbered_list(products)}\n\n"
            "Would you like more details about any of these?"
        )
        return KeywordResponse(
            is_keyword_match=True,
            response=response,
            product_data=_product_payload(products),
            bypass_ai=True,
            credits_used=COST_CATALOG,
            intent=IntentType.PRODUCT_QUERY,
        )

    async def handle_order_status(self, shop: str) -> KeywordResponse:
        try:
            config = await self.load_ai_settings(shop)
            store_name = config.store_details.name or store_name_from_shop(shop)
        except Exception as e:
            logger.error(f"Order status settings lookup failed for {shop}: {e}")
            store_name = store_name_from_shop(shop)
        return KeywordResponse(
            is_keyword_match=True,
            response=_order_status_reply(store_name),
            bypass_ai=True,
            credits_used=COST_ORDER_OR_CART,
            intent=IntentType.ORDER_STATUS,
        )

    async def handle_policy_query(self, shop: str, message: str, policy_type: Optional[str]) -> KeywordResponse:
        # Policy answers never carry products, whatever the catalog holds
        store_name = store_name_from_shop(shop)
        try:
            config = await self.load_ai_settings(shop)
        except Exception as e:
            logger.error(f"Policy settings lookup failed for {shop}: {e}")
            return self._policy(_policies_unavailable_reply(store_name))

        policies = config.policies
        if not policy_type:
            policy_type = next((key for key in ("shipping", "return", "refund", "payment", "privacy", "terms") if key in message), None)

        if not policy_type:
            available = policies.configured()
            if available:
                listing = "\n• ".join(available)
                return self._policy(
                    "I'd be happy to help you with our store policies! 😊 Here's what I can tell you about:\n\n"
                    f"• {listing}\n\n"
                    "Which specific policy would you like to learn more about? Just let me know and I'll provide the details!"
                )
            return self._policy(_policies_unavailable_reply(store_name))

        label = POLICY_LABELS[policy_type]
        content = policies.text_for(policy_type)
        if content.strip():
            return self._policy(
                f"Here's our **{label}**:\n\n{truncate_policy(content)}\n\n"
                "For complete details, please visit our website or contact support."
            )

        return self._policy(
            f"Great question about our {label.lower()}! 😊 While I'm getting those specific details organized for you, "
            f"I want to assure you that {store_name} is committed to fair and transparent policies.\n\n"
            f"For the most current {label.lower()} information, I'd recommend checking our website or contacting "
            "our support team - they'll have all the detailed information you need. In the meantime, is there "
            "anything else I can help you with today?"
        )

    @staticmethod
    def _policy(response: str) -> KeywordResponse:
        return KeywordResponse(
            is_keyword_match=True,
            response=response,
            product_data=[],
            bypass_ai=True,
            credits_used=COST_POLICY,
            intent=IntentType.POLICY_QUERY,
        )
