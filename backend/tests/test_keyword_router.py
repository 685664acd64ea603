import random
from datetime import datetime, timedelta, timezone

import pytest

pytest.importorskip("sqlalchemy")

from app.models.ai_settings import AISettings
from app.models.product import Order, OrderItem, Product
from app.services.chat.intent_classifier import IntentType
from app.services.chat.keyword_router import (
    COST_CATALOG,
    COST_CATALOG_EMPTY,
    COST_ORDER_OR_CART,
    COST_POLICY,
    COST_SMALL_TALK,
    GREETING_REPLIES,
    KeywordRouter,
    is_new_arrivals_query,
    truncate_policy,
)

SHOP = "cool-kicks.myshopify.com"


async def _seed_products(db, shop=SHOP):
    now = datetime.now(timezone.utc)
    products = [
        Product(shop=shop, prod_id="gid://shopify/Product/1", title="Canvas Tote", price=12.0,
                tags=["bags"], collections=[], variants=[], created_at=now - timedelta(days=3)),
        Product(shop=shop, prod_id="gid://shopify/Product/2", title="Gold Necklace", price=80.0,
                tags=["jewelry"], collections=[], variants=[], created_at=now - timedelta(days=1)),
        Product(shop=shop, prod_id="gid://shopify/Product/3", title="Wool Beanie", price=25.0,
                tags=["hats"], collections=[], variants=[], created_at=now - timedelta(days=2)),
    ]
    db.add_all(products)
    await db.commit()
    return products


@pytest.mark.asyncio
async def test_pronoun_messages_always_defer(db_session) -> None:
    router = KeywordRouter(db_session)
    result = await router.route(SHOP, "how much is it?")
    assert result.is_keyword_match is False
    assert result.credits_used == 0.0


@pytest.mark.asyncio
async def test_greeting_uses_canned_pool(db_session) -> None:
    router = KeywordRouter(db_session, rng=random.Random(7))
    result = await router.route(SHOP, "Hello!")
    assert result.is_keyword_match and result.bypass_ai
    assert result.response in GREETING_REPLIES
    assert result.credits_used == COST_SMALL_TALK
    assert result.intent == IntentType.GREETING


@pytest.mark.asyncio
async def test_cheap_items_is_answered_from_price_sort(db_session) -> None:
    await _seed_products(db_session)
    result = await KeywordRouter(db_session).route(SHOP, "show me cheap items")

    assert result.is_keyword_match
    assert result.credits_used == COST_CATALOG
    assert [p["title"] for p in result.product_data] == ["Canvas Tote", "Wool Beanie", "Gold Necklace"]
    assert result.response.startswith("Here are our most affordable products:")
    assert "1. **Canvas Tote** - $12.0" in result.response


@pytest.mark.asyncio
async def test_premium_query_sorts_descending(db_session) -> None:
    await _seed_products(db_session)
    result = await KeywordRouter(db_session).route(SHOP, "show me your most expensive items")
    assert result.product_data[0]["title"] == "Gold Necklace"
    assert result.meta["sort"] == "price_desc"


@pytest.mark.asyncio
async def test_price_query_with_catalog_category_goes_to_semantic_search(db_session) -> None:
    await _seed_products(db_session)
    result = await KeywordRouter(db_session).route(SHOP, "show me cheap jewelry")
    assert result.is_keyword_match is False
    assert result.intent == IntentType.PRODUCT_QUERY


@pytest.mark.asyncio
async def test_best_sellers_fall_back_to_all_time_sales(db_session) -> None:
    await _seed_products(db_session)
    old = datetime.now(timezone.utc) - timedelta(days=200)
    order = Order(shop=SHOP, created_at=old)
    order.items = [
        OrderItem(product_id="gid://shopify/Product/3", quantity=5),
        OrderItem(product_id="gid://shopify/Product/1", quantity=2),
    ]
    db_session.add(order)
    await db_session.commit()

    result = await KeywordRouter(db_session).route(SHOP, "show me your best sellers")

    assert result.is_keyword_match
    assert result.meta["all_time_fallback"] is True
    assert "(based on all-time sales)" in result.response
    assert [p["title"] for p in result.product_data] == ["Wool Beanie", "Canvas Tote"]


@pytest.mark.asyncio
async def test_best_sellers_without_catalog(db_session) -> None:
    result = await KeywordRouter(db_session).route(SHOP, "show me your best sellers")
    assert result.is_keyword_match
    assert result.credits_used == COST_CATALOG_EMPTY
    assert "setting up our product catalog" in result.response


@pytest.mark.asyncio
async def test_new_arrivals_are_newest_first(db_session) -> None:
    await _seed_products(db_session)
    result = await KeywordRouter(db_session).route(SHOP, "show me new arrivals")
    assert [p["title"] for p in result.product_data] == ["Gold Necklace", "Wool Beanie", "Canvas Tote"]


def test_fresh_fruit_is_not_a_new_arrivals_query() -> None:
    assert is_new_arrivals_query("any fresh stock?")
    assert not is_new_arrivals_query("do you sell fresh fruit")


@pytest.mark.asyncio
async def test_policy_answer_uses_merchant_text_and_never_products(db_session) -> None:
    await _seed_products(db_session)
    db_session.add(
        AISettings(shop=SHOP, settings={"policies": {"shipping": "Free shipping over $50. Ships in 2 days."}})
    )
    await db_session.commit()

    result = await KeywordRouter(db_session).route(SHOP, "what is your shipping policy?")

    assert result.credits_used == COST_POLICY
    assert result.product_data == []
    assert "Here's our **Shipping Policy**" in result.response
    assert "Free shipping over $50." in result.response


@pytest.mark.asyncio
async def test_policy_without_merchant_text_mentions_store(db_session) -> None:
    result = await KeywordRouter(db_session).route(SHOP, "what is your refund policy")
    assert result.product_data == []
    assert "Cool Kicks" in result.response


@pytest.mark.asyncio
async def test_order_status_uses_configured_store_name(db_session) -> None:
    db_session.add(AISettings(shop=SHOP, settings={"storeDetails": {"name": "Kicks HQ"}}))
    await db_session.commit()

    result = await KeywordRouter(db_session).route(SHOP, "where is my oder")
    assert result.intent == IntentType.ORDER_STATUS
    assert result.credits_used == COST_ORDER_OR_CART
    assert "from Kicks HQ" in result.response


@pytest.mark.asyncio
async def test_general_questions_defer_to_the_model(db_session) -> None:
    result = await KeywordRouter(db_session).route(SHOP, "how does sizing work for kids")
    assert result.is_keyword_match is False


def test_truncate_policy_prefers_sentence_end() -> None:
    text = ("A" * 350) + ". " + ("B" * 200)
    assert truncate_policy(text) == ("A" * 350) + "."

    no_period = "C" * 500
    assert truncate_policy(no_period) == ("C" * 400) + "..."
    assert truncate_policy("  short  ") == "short"
