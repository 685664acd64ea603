from .chat import ChatSession, Message, MessageProduct, MessageRole
from .customer import Customer
from .product import Product, Order, OrderItem
from .ai_settings import AISettings
from .credit import MerchantPlan, MerchantCredits, UsageLog, RequestType
