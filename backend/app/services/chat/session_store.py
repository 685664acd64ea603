from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import desc, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import SessionAccessDeniedException
from app.core.logging import get_logger
from app.models.chat import ChatSession, Message, MessageProduct, MessageRole
from app.models.customer import Customer
from app.schemas.chat import ChatHistoryResponse, ChatMessageOut, CustomerOut, SessionOut

logger = get_logger(__name__)

GUEST = "guest"


def is_guest(cust_mail: Optional[str]) -> bool:
    return not cust_mail or cust_mail.strip().lower() == GUEST


def message_out(message: Message) -> ChatMessageOut:
    return ChatMessageOut(
        id=str(message.id),
        role=message.role,
        content=message.content,
        created_at=message.created_at.isoformat() if message.created_at else None,
    )


class ChatSessionStore:
    """Sessions, customers and message persistence for one request."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_customer(self, shop: str, email: str) -> Optional[Customer]:
        result = await self.db.execute(
            select(Customer).where(Customer.shop == shop, Customer.email == email)
        )
        return result.scalars().first()

    async def resolve_customer(self, shop: str, cust_mail: Optional[str]) -> Optional[Customer]:
        """Find-or-create by (shop, email). Guests never get a row."""
        if is_guest(cust_mail):
            return None
        email = cust_mail.strip().lower()
        customer = await self.find_customer(shop, email)
        if customer is None:
            customer = Customer(shop=shop, email=email, source="WEBSITE")
            self.db.add(customer)
            await self.db.flush()
        return customer

    async def _latest_session(self, shop: str, customer_id: str) -> Optional[ChatSession]:
        result = await self.db.execute(
            select(ChatSession)
            .where(ChatSession.shop == shop, ChatSession.customer_id == customer_id)
            .order_by(desc(ChatSession.created_at))
            .limit(1)
        )
        return result.scalars().first()

    async def resolve_session(
        self,
        shop: str,
        customer: Optional[Customer],
        session_id: Optional[str] = None,
    ) -> ChatSession:
        if session_id:
            session = await self.db.get(ChatSession, session_id)
            if session is not None and session.shop == shop:
                return session
            if session is not None:
                logger.warning("Session id from another shop ignored", extra={"shop": shop})

        if customer is not None:
            session = await self._latest_session(shop, customer.id)
            if session is not None:
                return session

        session = ChatSession(
            shop=shop,
            customer_id=customer.id if customer is not None else None,
            is_guest=customer is None,
        )
        self.db.add(session)
        await self.db.commit()
        return session

    async def get_history(self, session_id: str, *, limit: int) -> List[Dict[str, Any]]:
        """Most recent messages, oldest first, as plain role/content dicts."""
        result = await self.db.execute(
            select(Message)
            .where(Message.session_id == session_id)
            .order_by(desc(Message.id))
            .limit(limit)
        )
        messages = list(result.scalars().all())
        messages.reverse()
        return [{"role": m.role, "content": m.content} for m in messages]

    async def save_turn(
        self,
        session_id: str,
        user_text: str,
        reply_text: str,
        *,
        reply_role: MessageRole = MessageRole.ASSISTANT,
        products: Sequence[Dict[str, Any]] = (),
    ) -> tuple[Message, Message]:
        """Write the user message and its reply in one transaction."""
        user_message = Message(session_id=session_id, role=MessageRole.USER.value, content=user_text)
        reply = Message(session_id=session_id, role=reply_role.value, content=reply_text)
        try:
            self.db.add(user_message)
            await self.db.flush()
            self.db.add(reply)
            await self.db.flush()
            # Only assistant replies carry products
            if reply_role == MessageRole.ASSISTANT:
                for product in products:
                    self.db.add(
                        MessageProduct(
                            message_id=reply.id,
                            product_id=str(product.get("id") or ""),
                            title=str(product.get("title") or ""),
                            price=float(product.get("price") or 0.0),
                            handle=product.get("handle") or None,
                            image=product.get("image") or None,
                            score=float(product.get("score") or 0.0),
                        )
                    )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise
        return user_message, reply

    async def load_history_view(
        self,
        shop: str,
        cust_mail: Optional[str],
        session_id: Optional[str] = None,
    ) -> ChatHistoryResponse:
        customer = None if is_guest(cust_mail) else await self.find_customer(shop, cust_mail.strip().lower())

        session: Optional[ChatSession] = None
        if session_id:
            session = await self.db.get(ChatSession, session_id)
            if session is None:
                return ChatHistoryResponse()
            if session.shop != shop:
                raise SessionAccessDeniedException()
        elif customer is not None:
            session = await self._latest_session(shop, customer.id)

        if session is None:
            return ChatHistoryResponse()

        result = await self.db.execute(
            select(Message)
            .where(Message.session_id == session.id)
            .order_by(Message.id)
        )
        messages = [message_out(m) for m in result.scalars().all()]

        if customer is None and session.customer_id:
            customer = await self.db.get(Customer, session.customer_id)

        return ChatHistoryResponse(
            session=SessionOut(
                id=session.id,
                shop=session.shop,
                customer_id=session.customer_id,
                is_guest=session.is_guest,
            ),
            messages=messages,
            customer=CustomerOut(
                id=customer.id,
                email=customer.email,
                first_name=customer.first_name,
                last_name=customer.last_name,
            )
            if customer is not None
            else None,
        )
