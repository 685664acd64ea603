from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from app.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_TONE = "friendly"

POLICY_LABELS = {
    "shipping": "Shipping Policy",
    "return": "Return Policy",
    "refund": "Refund Policy",
    "payment": "Payment Policy",
    "privacy": "Privacy Policy",
    "terms": "Terms of Service",
}


class _SettingsModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class StoreDetails(_SettingsModel):
    name: str = ""
    about: str = ""
    location: str = ""


class Policies(_SettingsModel):
    shipping: str = ""
    returns: str = ""
    refunds: str = ""
    refund: str = ""
    payment: str = ""
    privacy: str = ""
    terms: str = ""

    @field_validator("*", mode="before")
    @classmethod
    def coerce_text(cls, value: Any) -> str:
        if value is None:
            return ""
        return str(value)

    def text_for(self, policy_type: str) -> str:
        if policy_type == "shipping":
            return self.shipping
        if policy_type == "return":
            return self.returns
        if policy_type == "refund":
            return self.refunds or self.refund
        if policy_type == "payment":
            return self.payment
        if policy_type == "privacy":
            return self.privacy
        if policy_type == "terms":
            return self.terms
        return ""

    def configured(self) -> List[str]:
        """Display names of the policies that have text, in menu order."""
        available = []
        if self.shipping.strip():
            available.append("Shipping")
        if self.returns.strip():
            available.append("Returns")
        if self.refunds.strip() or self.refund.strip():
            available.append("Refunds")
        if self.privacy.strip():
            available.append("Privacy")
        if self.terms.strip():
            available.append("Terms of Service")
        if self.payment.strip():
            available.append("Payment")
        return available


class ResponseTone(_SettingsModel):
    selected_tone: List[str] = []
    custom_instructions: str = ""


class LanguageSettings(_SettingsModel):
    primary_language: str = "English"
    auto_detect: bool = True


class AISettingsConfig(_SettingsModel):
    """Validated per-shop merchant settings with defaults applied once."""

    store_details: StoreDetails = StoreDetails()
    policies: Policies = Policies()
    response_tone: ResponseTone = ResponseTone()
    language_settings: LanguageSettings = LanguageSettings()
    ai_instructions: str = ""

    @field_validator("store_details", "policies", "response_tone", "language_settings", mode="before")
    @classmethod
    def none_to_defaults(cls, value: Any) -> Any:
        return {} if value is None else value

    @field_validator("ai_instructions", mode="before")
    @classmethod
    def none_to_empty(cls, value: Any) -> str:
        return "" if value is None else str(value)

    @property
    def tone(self) -> str:
        tones = [t for t in self.response_tone.selected_tone if t and t.strip()]
        return tones[0] if tones else DEFAULT_TONE

    @classmethod
    def from_raw(cls, raw: Optional[Dict[str, Any]], *, shop: str = "") -> "AISettingsConfig":
        if not raw:
            return cls()
        try:
            return cls.model_validate(raw)
        except ValidationError as exc:
            logger.warning(
                "Invalid AI settings, falling back to defaults",
                extra={"shop": shop, "errors": exc.error_count()},
            )
            return cls()
