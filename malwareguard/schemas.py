from pydantic import BaseModel, Field, computed_field, field_validator
from typing import Optional, List, Literal, Union
from datetime import datetime
from enum import Enum

# ==========================================
# 🧱 SHARED MODELS
# ==========================================

class RiskTier(str, Enum):
    SAFE = "Safe"
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"


class Indicator(BaseModel):
    category: str
    label: str
    weight_contribution: int

    class Config:
        frozen = True


class ScoreAdjustment(BaseModel):
    """A signed score delta contributed by an enrichment step or a check."""
    key: str
    delta: int
    label: str

    class Config:
        frozen = True


class Classification(BaseModel):
    score: int
    tier: RiskTier
    label: str

    class Config:
        frozen = True


class RiskAssessment(BaseModel):
    """
    Common shape of every analyzer result.
    A null assessment (empty input) has no score, tier, label or category.
    """
    kind: str
    score: Optional[int] = None
    tier: Optional[RiskTier] = None
    label: Optional[str] = None
    indicators: List[Indicator] = []
    recommendations: List[str] = []
    category: Optional[str] = None

    class Config:
        frozen = True

    @property
    def is_null(self) -> bool:
        return self.score is None

# ==========================================
# 🌐 URL RESULTS
# ==========================================

class UrlDetails(BaseModel):
    protocol: str
    host: str
    ssl: bool
    site_category: str
    scanned_at: datetime

    class Config:
        frozen = True


class UrlAssessment(RiskAssessment):
    kind: Literal["url"] = "url"
    url: str = ""
    threats: List[str] = []
    metadata: Optional[UrlDetails] = None

    @computed_field
    @property
    def risk_score(self) -> Optional[int]:
        return self.score

# ==========================================
# 💬 MESSAGE RESULTS
# ==========================================

class MessageDetails(BaseModel):
    embedded_urls: List[str] = []
    matched_categories: List[str] = []

    class Config:
        frozen = True


class MessageAssessment(RiskAssessment):
    kind: Literal["message"] = "message"
    risk: Optional[bool] = None
    metadata: Optional[MessageDetails] = None

# ==========================================
# 📧 EMAIL RESULTS
# ==========================================

class BreachRecord(BaseModel):
    name: str
    date: str

    class Config:
        frozen = True


class EmailChecks(BaseModel):
    valid_format: bool
    domain_reputation: Literal["good", "suspicious", "bad"]
    breach_history: bool
    spam_listed: bool
    # None when the lookup was not performed (invalid address)
    mx_records: Optional[bool] = None
    spf_record: Optional[bool] = None
    dmarc_record: Optional[bool] = None
    dns_health: Optional[bool] = None

    class Config:
        frozen = True


class PentestAssessment(BaseModel):
    social_engineering_risk: str
    data_exposure: bool
    phishing_vulnerability: int
    account_takeover_risk: str
    findings: List[str] = []

    class Config:
        frozen = True


class EmailDetails(BaseModel):
    provider: str
    risk_level: str
    last_breach_date: Optional[str] = None
    breaches: List[BreachRecord] = []
    checks: EmailChecks
    pentest: PentestAssessment
    adjustments: List[ScoreAdjustment] = []
    is_simulated: bool = False
    dns_available: bool = True

    class Config:
        frozen = True


class EmailAssessment(RiskAssessment):
    kind: Literal["email"] = "email"
    email: str = ""
    metadata: Optional[EmailDetails] = None

# ==========================================
# 🕘 HISTORY
# ==========================================

class ScanHistoryEntry(BaseModel):
    id: str
    kind: str
    input: str
    assessment: Union[UrlAssessment, MessageAssessment, EmailAssessment] = Field(discriminator="kind")
    scanned_at: datetime

# ==========================================
# 📥 INPUT MODELS
# ==========================================

class ScanRequest(BaseModel):
    input: str = Field("", description="URL, message body or email address to analyze")


AI_PROVIDERS = ("openai", "perplexity")


class SettingUpdate(BaseModel):
    value: str

    @field_validator("value")
    @classmethod
    def strip_value(cls, v: str) -> str:
        return v.strip()


class SettingResponse(BaseModel):
    key: str
    value: Optional[str] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
