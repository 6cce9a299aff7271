import json
import re
import logging
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Iterable

from pydantic import BaseModel

from malwareguard.schemas import RiskTier

logger = logging.getLogger(__name__)

CATALOG_VERSION = "2025.1"


class CatalogValidationError(ValueError):
    """Raised at start-up when a rule catalog is internally inconsistent."""


class RuleKind(str, Enum):
    KEYWORD = "keyword"   # case-insensitive substring
    REGEX = "regex"
    DOMAIN = "domain"     # host equals pattern or is a subdomain of it


class ScorePolarity(str, Enum):
    ADDITIVE = "additive"         # start at 0, findings add risk
    SUBTRACTIVE = "subtractive"   # start at 100, findings remove safety

    @property
    def base_score(self) -> int:
        return 0 if self is ScorePolarity.ADDITIVE else 100

    @property
    def sign(self) -> int:
        return 1 if self is ScorePolarity.ADDITIVE else -1


class RuleEntry(BaseModel):
    category: str
    pattern: str
    weight: int
    kind: RuleKind = RuleKind.KEYWORD
    field: str = "text"
    label: str = ""

    class Config:
        frozen = True


class RuleCategory(BaseModel):
    name: str
    title: str
    rules: Tuple[RuleEntry, ...]
    # Categorical checks contribute at most one indicator
    categorical: bool = False
    # Benign categories are reported but are not threats
    benign: bool = False

    class Config:
        frozen = True


class RuleCatalog(BaseModel):
    domain: str
    version: str = CATALOG_VERSION
    polarity: ScorePolarity = ScorePolarity.ADDITIVE
    categories: Tuple[RuleCategory, ...]
    # Ordered by priority: only the first matching category of a group counts
    exclusive_groups: Tuple[Tuple[str, ...], ...] = ()

    class Config:
        frozen = True

    @property
    def category_names(self) -> List[str]:
        return [c.name for c in self.categories]

    def get(self, name: str) -> Optional[RuleCategory]:
        for category in self.categories:
            if category.name == name:
                return category
        return None

    def benign_categories(self) -> List[str]:
        return [c.name for c in self.categories if c.benign]


class ThresholdBand(BaseModel):
    minimum: int
    tier: RiskTier
    label: str

    class Config:
        frozen = True


class ThresholdTable(BaseModel):
    """Score bands ordered from the highest minimum down to 0."""
    name: str
    bands: Tuple[ThresholdBand, ...]

    class Config:
        frozen = True


class CatalogBundle(BaseModel):
    version: str = CATALOG_VERSION
    url: RuleCatalog
    message: RuleCatalog
    email: RuleCatalog

    class Config:
        frozen = True


def _category(name: str, title: str, entries: Iterable[Tuple], kind: RuleKind = RuleKind.KEYWORD,
              field: str = "text", categorical: bool = False, benign: bool = False) -> RuleCategory:
    """Build a category from (pattern, weight[, label]) tuples"""
    rules = []
    for entry in entries:
        pattern, weight = entry[0], entry[1]
        label = entry[2] if len(entry) > 2 else title
        rules.append(RuleEntry(
            category=name, pattern=pattern, weight=weight,
            kind=kind, field=field, label=label
        ))
    return RuleCategory(name=name, title=title, rules=tuple(rules),
                        categorical=categorical, benign=benign)


# ============================================================================
# URL CATALOG
# ============================================================================

MALICIOUS_DOMAINS = [
    'badsite.cc', 'malware-download.net', 'phishing-site.com', 'free-money-now.biz',
    'phish-login.com', 'secure-bank-verify.xyz', 'paypal-security.top',
    'account-verify.ml', 'login-verify-account.tk', 'apple-id-unlock.ga',
]

SUSPICIOUS_DOMAINS = [
    'bit.ly', 'bitly.com', 'tinyurl.com', 'goo.gl', 't.co', 'ow.ly', 'is.gd',
    'buff.ly', 'adf.ly', 'rebrand.ly', 'shorturl.at', 'cutt.ly', 'rb.gy',
    'bit.do', 'v.gd', 'tiny.cc', 'shorte.st', 'bc.vc',
]

SAFE_DOMAINS = [
    'google.com', 'github.com', 'microsoft.com', 'apple.com', 'amazon.com',
    'paypal.com', 'wikipedia.org', 'youtube.com', 'linkedin.com', 'facebook.com',
    'stackoverflow.com', 'python.org', 'mozilla.org', 'cloudflare.com',
]


def _url_catalog(bad_domains: List[str], suspicious_domains: List[str],
                 safe_domains: List[str]) -> RuleCatalog:
    return RuleCatalog(
        domain="url",
        categories=(
            _category("malicious_domain", "Known malicious domain",
                      [(d, 95) for d in bad_domains],
                      kind=RuleKind.DOMAIN, field="host", categorical=True),
            _category("suspicious_domain", "Known suspicious domain (URL shortener)",
                      [(d, 55) for d in suspicious_domains],
                      kind=RuleKind.DOMAIN, field="host", categorical=True),
            _category("safe_domain", "Known safe domain",
                      [(d, 5) for d in safe_domains],
                      kind=RuleKind.DOMAIN, field="host", categorical=True, benign=True),
            _category("malicious_keyword", "Malicious keywords", [
                (r'phishing|scam|fake|virus|malware|download-now|free-money|click-here', 40,
                 "Malicious keywords: {matches}"),
            ], kind=RuleKind.REGEX),
            _category("insecure_protocol", "Unsecured HTTP connection", [
                (r'^http://', 20),
            ], kind=RuleKind.REGEX),
            _category("login_path", "Login page detected", [
                (r'log[-_]?in|sign[-_]?in|signon|auth|verify|account', 15),
            ], kind=RuleKind.REGEX, field="path"),
            _category("payment_path", "Payment page detected", [
                (r'pay(?:ment)?|checkout|billing|wallet|bank|invoice', 15),
            ], kind=RuleKind.REGEX, field="path"),
            _category("ip_host", "IP address used instead of domain name", [
                (r'^\d{1,3}(?:\.\d{1,3}){3}$', 25),
            ], kind=RuleKind.REGEX, field="host"),
            _category("numeric_sequence", "Suspicious numeric sequence", [
                (r'\d{6,}', 10, "Long numeric sequence: {matches}"),
            ], kind=RuleKind.REGEX),
            _category("urgency_keyword", "Urgency keywords in URL", [
                (r'urgent|act-?now|expire|suspend|limited-?time|verify-?now', 10,
                 "Urgency keywords in URL: {matches}"),
            ], kind=RuleKind.REGEX),
            _category("subdomain_depth", "Excessive subdomain depth", [
                (r'^(?:[^.]+\.){2,}[^.]+$', 10),
            ], kind=RuleKind.REGEX, field="subdomain"),
        ),
        exclusive_groups=(("malicious_domain", "suspicious_domain", "safe_domain"),),
    )

# ============================================================================
# MESSAGE CATALOG
# ============================================================================

MESSAGE_CATALOG = RuleCatalog(
    domain="message",
    categories=(
        _category("urgency", "Urgency tactics", [
            (r'\b(?:urgent|urgently|immediate|immediately|asap|act now|right away|expires? (?:today|soon))\b', 25,
             "Urgency tactics: {matches}"),
            (r'\b(?:within|in) (?:24|48|72) hours\b|\bfinal (?:notice|warning)\b|\blimited time\b', 15,
             "Deadline pressure: {matches}"),
        ], kind=RuleKind.REGEX),
        _category("financial", "Financial language", [
            (r'\b(?:pay now|payment|wire transfer|bank account|credit card|refund|invoice|gift card|bitcoin|crypto)\b', 20,
             "Financial request: {matches}"),
        ], kind=RuleKind.REGEX),
        _category("credential", "Credential request", [
            (r'\b(?:password|passcode|login|log in|sign in|ssn|social security|one[- ]time code|otp|pin code)\b', 25,
             "Credential request: {matches}"),
            (r'\b(?:verify|confirm|update) your (?:account|identity|details|information)\b', 20,
             "Identity verification request: {matches}"),
        ], kind=RuleKind.REGEX),
        _category("threat", "Threat language", [
            (r'\b(?:suspend(?:ed)?|suspension|locked|disabled|terminated|deactivated|blocked|legal action)\b', 20,
             "Threat language: {matches}"),
        ], kind=RuleKind.REGEX),
        _category("suspicious_link", "Suspicious link", [
            (r'https?://[^\s/]+\.[a-z]{2,}', 10, "Embedded link"),
            (r'http://\S+', 20, "Unsecured link: {matches}"),
            (r'https?://[^\s/]+\.(?:tk|ml|ga|cf|gq|xyz|top|click|fake|cc|ru)\b', 20,
             "Suspicious link domain: {matches}"),
            (r'https?://\d{1,3}(?:\.\d{1,3}){3}', 25, "Link to raw IP address"),
            (r'\b(?:bit\.ly|tinyurl\.com|goo\.gl|ow\.ly|is\.gd|cutt\.ly|rb\.gy)/', 15,
             "Shortened link: {matches}"),
            (r'\b(?:click here|tap here|click the link|click below|follow the link)\b', 10,
             "Call to click: {matches}"),
        ], kind=RuleKind.REGEX),
        _category("impersonation", "Brand impersonation", [
            (r'\b(?:paypal|amazon|apple|microsoft|google|netflix|bank of america|chase|wells fargo|irs|fedex|dhl|usps)\b', 15,
             "Brand impersonation: {matches}"),
        ], kind=RuleKind.REGEX),
        _category("grammar", "Grammar anomalies", [
            (r'\b(?:dear (?:customer|user|valued customer|account holder|sir/madam)|kindly|you account|click on below)\b', 10,
             "Generic greeting or awkward phrasing: {matches}"),
            (r'[!?]{2,}', 5, "Excessive punctuation"),
            (r'\b(\w+)\s+\1\b', 5, "Repeated words: {matches}"),
        ], kind=RuleKind.REGEX),
    ),
)

# ============================================================================
# EMAIL CATALOG (subtractive)
# ============================================================================

PUBLIC_PROVIDERS = {
    'gmail.com': 'Google Gmail',
    'googlemail.com': 'Google Gmail',
    'yahoo.com': 'Yahoo Mail',
    'outlook.com': 'Microsoft Outlook',
    'hotmail.com': 'Microsoft Hotmail',
    'live.com': 'Microsoft Live',
    'icloud.com': 'Apple iCloud',
    'aol.com': 'AOL Mail',
    'protonmail.com': 'ProtonMail',
    'proton.me': 'ProtonMail',
    'zoho.com': 'Zoho Mail',
    'gmx.com': 'GMX Mail',
}

DISPOSABLE_KEYWORDS = [
    'tempmail', 'temp-mail', '10minute', 'guerrilla', 'throwaway', 'mailinator',
    'yopmail', 'trashmail', 'fakeinbox', 'sharklasers', 'dispostable', 'getnada',
]

EMAIL_CATALOG = RuleCatalog(
    domain="email",
    polarity=ScorePolarity.SUBTRACTIVE,
    categories=(
        _category("public_provider", "Public email provider",
                  [(d, 0) for d in PUBLIC_PROVIDERS],
                  kind=RuleKind.DOMAIN, field="domain", categorical=True, benign=True),
        _category("disposable_domain", "Disposable email domain",
                  [(k, 25, "Disposable email domain: {matches}") for k in DISPOSABLE_KEYWORDS],
                  field="domain", categorical=True),
        _category("personal_info", "Personal information in username", [
            (r'(?:19[4-9]\d|20[0-2]\d)', 10, "Birth year in username: {matches}"),
            (r'\d{7,}', 10, "Phone-like number in username"),
            (r'^[a-z]+[._][a-z]+$', 5, "Full name in username"),
        ], kind=RuleKind.REGEX, field="username"),
        _category("weak_username", "Weak username", [
            (r'^(?:test|admin|info|user|demo|guest|root|mail|contact|support|hello|sales)\d*$', 10,
             "Generic username"),
            (r'^.{1,3}$', 5, "Very short username"),
        ], kind=RuleKind.REGEX, field="username"),
    ),
)

# ============================================================================
# THRESHOLD TABLES
# ============================================================================

URL_THRESHOLDS = ThresholdTable(name="url", bands=(
    ThresholdBand(minimum=80, tier=RiskTier.HIGH, label="High Risk"),
    ThresholdBand(minimum=50, tier=RiskTier.MEDIUM, label="Medium Risk"),
    ThresholdBand(minimum=30, tier=RiskTier.LOW, label="Low Risk"),
    ThresholdBand(minimum=0, tier=RiskTier.SAFE, label="Safe"),
))

MESSAGE_THRESHOLDS = ThresholdTable(name="message", bands=(
    ThresholdBand(minimum=70, tier=RiskTier.HIGH, label="High Risk"),
    ThresholdBand(minimum=40, tier=RiskTier.MEDIUM, label="Medium Risk"),
    ThresholdBand(minimum=0, tier=RiskTier.LOW, label="Low Risk"),
))

# Inverted polarity: a higher score is safer
EMAIL_THRESHOLDS = ThresholdTable(name="email", bands=(
    ThresholdBand(minimum=75, tier=RiskTier.LOW, label="safe"),
    ThresholdBand(minimum=50, tier=RiskTier.MEDIUM, label="warning"),
    ThresholdBand(minimum=0, tier=RiskTier.HIGH, label="danger"),
))

# ============================================================================
# LOADING & VALIDATION
# ============================================================================

def _load_intel_file(path: Optional[str]) -> Dict[str, List[str]]:
    """
    Load the optional intel file extending the built-in domain lists

    Args:
        path: Configured location, tried before the default locations

    Returns:
        Dictionary with 'bad_domains', 'suspicious_domains', 'safe_domains'
    """
    possible_paths = []
    if path:
        possible_paths.append(Path(path))
    possible_paths.extend([
        Path(__file__).resolve().parents[2] / 'data' / 'intel_db.json',
        Path.cwd() / 'data' / 'intel_db.json',
    ])

    for file_path in possible_paths:
        if not file_path.exists():
            continue
        try:
            with open(file_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.error(f"❌ Could not read intel file {file_path}: {e}")
            return {}
        logger.info(f"✓ Loaded intel file: {file_path}")
        return {
            key: [str(d).lower().strip() for d in data.get(key, []) if str(d).strip()]
            for key in ('bad_domains', 'suspicious_domains', 'safe_domains')
        }

    return {}


def _merge(builtin: List[str], extra: List[str]) -> List[str]:
    merged = list(builtin)
    for domain in extra:
        if domain not in merged:
            merged.append(domain)
    return merged


def build_catalogs(intel_path: Optional[str] = None) -> CatalogBundle:
    """Build the catalog bundle from built-ins plus the optional intel file"""
    intel = _load_intel_file(intel_path)
    url_catalog = _url_catalog(
        _merge(MALICIOUS_DOMAINS, intel.get('bad_domains', [])),
        _merge(SUSPICIOUS_DOMAINS, intel.get('suspicious_domains', [])),
        _merge(SAFE_DOMAINS, intel.get('safe_domains', [])),
    )
    return CatalogBundle(url=url_catalog, message=MESSAGE_CATALOG, email=EMAIL_CATALOG)


def validate_catalog(catalog: RuleCatalog, recommendation_keys: Iterable[str],
                     extra_keys: Iterable[str] = ()) -> None:
    """
    Fail fast on an inconsistent catalog

    Args:
        catalog: Catalog to check
        recommendation_keys: Keys of the recommendation map for this catalog
        extra_keys: Non-catalog finding keys the map may also reference

    Raises:
        CatalogValidationError: on the first problem found
    """
    names = set(catalog.category_names)
    allowed = names | set(extra_keys)
    recommendation_keys = set(recommendation_keys)

    for key in recommendation_keys:
        if key not in allowed:
            raise CatalogValidationError(
                f"{catalog.domain}: recommendation references unknown category '{key}'"
            )

    seen = set()
    for category in catalog.categories:
        if not category.benign and category.name not in recommendation_keys:
            raise CatalogValidationError(
                f"{catalog.domain}: category '{category.name}' has no recommendation"
            )
        for rule in category.rules:
            if rule.category != category.name:
                raise CatalogValidationError(
                    f"{catalog.domain}: rule '{rule.pattern}' filed under '{category.name}' "
                    f"but tagged '{rule.category}'"
                )
            if rule.weight < 0:
                raise CatalogValidationError(
                    f"{catalog.domain}: negative weight for '{rule.pattern}'"
                )
            key = (rule.category, rule.pattern)
            if key in seen:
                raise CatalogValidationError(
                    f"{catalog.domain}: duplicate rule {key}"
                )
            seen.add(key)
            if rule.kind is RuleKind.REGEX:
                try:
                    re.compile(rule.pattern)
                except re.error as e:
                    raise CatalogValidationError(
                        f"{catalog.domain}: invalid pattern '{rule.pattern}': {e}"
                    ) from e

    for group in catalog.exclusive_groups:
        previous = None
        for name in group:
            category = catalog.get(name)
            if category is None:
                raise CatalogValidationError(
                    f"{catalog.domain}: exclusive group references unknown category '{name}'"
                )
            # Priority order must not let a lower-priority match outweigh a higher one
            weight = max((r.weight for r in category.rules), default=0)
            if previous is not None and weight > previous:
                raise CatalogValidationError(
                    f"{catalog.domain}: exclusive group {group} is not ordered by weight"
                )
            previous = weight


def validate_thresholds(table: ThresholdTable) -> None:
    minimums = [band.minimum for band in table.bands]
    if not minimums or minimums[-1] != 0:
        raise CatalogValidationError(f"{table.name}: threshold table must end at 0")
    if any(a <= b for a, b in zip(minimums, minimums[1:])):
        raise CatalogValidationError(f"{table.name}: thresholds must be strictly descending")
    if minimums[0] > 100:
        raise CatalogValidationError(f"{table.name}: threshold above 100")
