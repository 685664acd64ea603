from __future__ import annotations

import enum
import re
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple


class IntentType(str, enum.Enum):
    COMPLIMENT = "COMPLIMENT"
    GREETING = "GREETING"
    POLICY_QUERY = "POLICY_QUERY"
    ORDER_STATUS = "ORDER_STATUS"
    ORDER_EDIT = "ORDER_EDIT"
    ADD_TO_CART = "ADD_TO_CART"
    STORE_INFO = "STORE_INFO"
    PRODUCT_QUERY = "PRODUCT_QUERY"
    GENERAL_INQUIRY = "GENERAL_INQUIRY"


@dataclass(frozen=True)
class IntentClassification:
    intent: IntentType
    confidence: str  # high | medium | low
    policy_type: Optional[str] = None
    order_action: Optional[str] = None
    product_type: Optional[str] = None


COMPLIMENT_PATTERNS = (
    "you are the best", "you guys are the best", "you're the best",
    "you are amazing", "you're amazing", "you are awesome", "you're awesome",
    "you are great", "you're great", "you are wonderful", "you're wonderful",
    "you are excellent", "you're excellent", "you are fantastic", "you're fantastic",
    "love you", "love your", "thank you so much", "thanks so much",
    "appreciate you", "appreciate it", "you rock",
    "best service", "great service", "excellent service", "amazing service",
    "well done", "good job", "nice work", "keep it up",
    "so helpful", "very helpful", "really helpful", "extremely helpful",
    "so kind", "very kind", "really kind", "so nice", "very nice",
    "impressed", "amazing", "fantastic", "wonderful", "brilliant",
)

GREETINGS = (
    "hi there", "hello there", "good morning", "good afternoon", "good evening",
    "what's up", "hi", "hello", "hey", "howdy", "greetings", "sup",
)

POLICY_KEYWORDS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("shipping", (
        "shipping cost", "shipping price", "shipping fee", "shipping policy",
        "delivery cost", "delivery price", "delivery fee", "delivery policy",
        "how much shipping", "how much delivery", "free shipping",
        "shipping information", "shipping details", "shipping rules",
    )),
    ("return", (
        "return policy", "return item", "how to return", "can i return",
        "return process", "return information", "return details",
    )),
    ("refund", (
        "refund policy", "how to refund", "can i get refund", "refund process",
        "refund information", "refund details", "money back",
    )),
    ("payment", (
        "payment method", "payment options", "how to pay", "payment policy",
        "payment information", "payment details", "accepted payment",
    )),
    ("privacy", (
        "privacy policy", "privacy information", "data privacy", "privacy details",
    )),
    ("terms", (
        "terms of service", "terms and conditions", "terms of use", "user agreement",
    )),
)

# "I want to buy groceries" is a product search, only explicit cart commands count
ADD_TO_CART_KEYWORDS = (
    "add to cart", "add it to cart", "add to my cart", "add this to cart",
    "put in cart", "put it in cart", "add to basket", "add it to basket",
    "add to shopping cart", "add it to shopping cart", "add to bag",
    "add it to bag", "add to my bag",
)

ORDER_EDIT_KEYWORDS = (
    "add to order", "add to my order", "add to existing order",
    "modify order", "change my order", "edit order", "update order",
    "can i add", "add the ",
)
ORDER_EDIT_PATTERN = re.compile(r"add \S* to \S* order", re.IGNORECASE)

ORDER_STATUS_KEYWORDS = (
    "track order", "order status", "where is my order", "tracking",
    "order number", "track my package", "delivery status", "shipment status",
)

STORE_INFO_KEYWORDS = (
    "store name", "what is your store", "your store name", "name of store",
    "who are you", "what store", "store called", "business name",
    "company name", "shop name", "about your store", "tell me about your store",
)

PRODUCT_HIGH_CONFIDENCE = (
    "show me", "looking for", "need a", "want to buy", "shopping for",
    "find", "search for", "do you have", "do you sell", "available",
    "tell me about", "tell me any", "which", "what products",
)

PRODUCT_CATEGORIES = (
    "clothing", "clothes", "apparel", "fashion", "shirt", "dress", "shoes",
    "electronics", "phone", "laptop", "computer", "tablet",
    "furniture", "home", "kitchen", "bedroom", "sofa", "chair",
    "beauty", "skincare", "makeup", "cosmetics",
    "sport", "outdoor", "fitness", "gym",
)

PRODUCT_TYPES = (
    "blender", "samsung", "phone", "laptop", "shirt", "dress", "shoes",
    "jacket", "furniture", "sofa", "chair", "table", "boots", "sneakers",
)


def _contains_any(message: str, keywords: Sequence[str]) -> bool:
    return any(keyword in message for keyword in keywords)


def _first_in(message: str, keywords: Sequence[str]) -> Optional[str]:
    return next((keyword for keyword in keywords if keyword in message), None)


def is_compliment(message: str) -> bool:
    return _contains_any(message, COMPLIMENT_PATTERNS)


def is_greeting(message: str) -> bool:
    # Prefix match on a word boundary so "hiking boots" or "super glue" stay product searches
    for greeting in GREETINGS:
        if message == greeting:
            return True
        if message.startswith(greeting):
            following = message[len(greeting)]
            if not following.isalnum():
                return True
    return False


def policy_type_for(message: str) -> Optional[str]:
    for policy_type, keywords in POLICY_KEYWORDS:
        if _contains_any(message, keywords):
            return policy_type
    return None


def is_add_to_cart(message: str) -> bool:
    return _contains_any(message, ADD_TO_CART_KEYWORDS)


def order_query_type(message: str) -> Optional[str]:
    """Return "edit", "status" or None. Edit phrases are checked first."""
    if _contains_any(message, ORDER_EDIT_KEYWORDS) or ORDER_EDIT_PATTERN.search(message):
        return "edit"
    if _contains_any(message, ORDER_STATUS_KEYWORDS):
        return "status"
    return None


def is_store_info(message: str) -> bool:
    return _contains_any(message, STORE_INFO_KEYWORDS)


class IntentClassifier:
    """Keyword classifier. Evaluation order is fixed: policy must win over product."""

    @staticmethod
    def classify(message: str) -> IntentClassification:
        text = (message or "").lower().strip()

        if is_compliment(text):
            return IntentClassification(IntentType.COMPLIMENT, "high")

        if is_greeting(text):
            return IntentClassification(IntentType.GREETING, "high")

        policy_type = policy_type_for(text)
        if policy_type:
            return IntentClassification(IntentType.POLICY_QUERY, "high", policy_type=policy_type)

        if is_add_to_cart(text):
            return IntentClassification(IntentType.ADD_TO_CART, "high")

        order_type = order_query_type(text)
        if order_type == "edit":
            return IntentClassification(IntentType.ORDER_EDIT, "high", order_action="add")
        if order_type == "status":
            return IntentClassification(IntentType.ORDER_STATUS, "high", order_action="track")

        if is_store_info(text):
            return IntentClassification(IntentType.STORE_INFO, "high")

        if _contains_any(text, PRODUCT_HIGH_CONFIDENCE):
            return IntentClassification(
                IntentType.PRODUCT_QUERY,
                "high",
                product_type=_first_in(text, PRODUCT_TYPES),
            )

        category = _first_in(text, PRODUCT_CATEGORIES)
        if category:
            return IntentClassification(IntentType.PRODUCT_QUERY, "medium", product_type=category)

        return IntentClassification(IntentType.GENERAL_INQUIRY, "low")


def classify_intent(message: str) -> IntentClassification:
    return IntentClassifier.classify(message)
