import re
import uuid
import asyncio
import logging
from collections import deque
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from malwareguard.config import settings
from malwareguard.core.ioc_extractor import IOCExtractor
from malwareguard.core.pentest import PentestAnalyzer
from malwareguard.core.recommendations import (
    RecommendationGenerator,
    URL_RECOMMENDATIONS,
    MESSAGE_RECOMMENDATIONS,
    EMAIL_RECOMMENDATIONS,
    EMAIL_AFFIRMATION,
    validate_bundle,
)
from malwareguard.core.risk_scorer import RuleBasedScorer
from malwareguard.core.rule_catalog import (
    CatalogBundle,
    RuleCatalog,
    build_catalogs,
    PUBLIC_PROVIDERS,
    URL_THRESHOLDS,
    MESSAGE_THRESHOLDS,
    EMAIL_THRESHOLDS,
)
from malwareguard.core.threat_intel import (
    ThreatIntelligence,
    DnsLookup,
    BreachLookup,
    simulated_breach_lookup,
)
from malwareguard.schemas import (
    RiskTier,
    ScoreAdjustment,
    UrlAssessment,
    UrlDetails,
    MessageAssessment,
    MessageDetails,
    EmailAssessment,
    EmailChecks,
    EmailDetails,
    ScanHistoryEntry,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# URL
# ============================================================================

class UrlAnalyzer:
    def __init__(self, catalog: Optional[RuleCatalog] = None,
                 extractor: Optional[IOCExtractor] = None, clock: Optional[Clock] = None):
        self.extractor = extractor or IOCExtractor()
        self.scorer = RuleBasedScorer(
            catalog or build_catalogs().url,
            URL_THRESHOLDS,
            RecommendationGenerator(URL_RECOMMENDATIONS),
        )
        self.clock = clock or utc_now

    def analyze(self, url: str) -> UrlAssessment:
        """Score a URL against the URL catalog. Pure apart from the clock."""
        fields = self.extractor.prepare_url(url)
        if not fields['text']:
            return UrlAssessment()

        card = self.scorer.score(fields)
        tier = card.classification.tier

        return UrlAssessment(
            url=fields['text'],
            score=card.score,
            tier=tier,
            label=card.classification.label,
            indicators=card.indicators,
            threats=self.scorer.threats(card.indicators),
            recommendations=card.recommendations,
            category=self._status(tier),
            metadata=UrlDetails(
                protocol=fields['protocol'],
                host=fields['host'],
                ssl=fields['protocol'] == 'https',
                site_category=self._site_category(fields['text']),
                scanned_at=self.clock(),
            ),
        )

    @staticmethod
    def _status(tier: RiskTier) -> str:
        if tier in (RiskTier.HIGH, RiskTier.CRITICAL):
            return 'malicious'
        if tier is RiskTier.SAFE:
            return 'safe'
        return 'suspicious'

    @staticmethod
    def _site_category(url: str) -> str:
        if 'bank' in url:
            return 'Financial'
        if 'social' in url:
            return 'Social Media'
        if 'shop' in url:
            return 'E-commerce'
        return 'General'


# ============================================================================
# MESSAGE
# ============================================================================

class MessageAnalyzer:
    # Scores above this mark a message as a likely phishing attempt
    RISK_CUTOFF = 40

    def __init__(self, catalog: Optional[RuleCatalog] = None,
                 extractor: Optional[IOCExtractor] = None):
        self.extractor = extractor or IOCExtractor()
        self.scorer = RuleBasedScorer(
            catalog or build_catalogs().message,
            MESSAGE_THRESHOLDS,
            RecommendationGenerator(MESSAGE_RECOMMENDATIONS),
        )

    def analyze(self, text: str) -> MessageAssessment:
        fields = self.extractor.prepare_message(text)
        if not fields['text']:
            return MessageAssessment()

        card = self.scorer.score(fields)

        return MessageAssessment(
            risk=card.score > self.RISK_CUTOFF,
            score=card.score,
            tier=card.classification.tier,
            label=card.classification.label,
            indicators=card.indicators,
            recommendations=card.recommendations,
            category=card.classification.label,
            metadata=MessageDetails(
                embedded_urls=self.extractor.extract_urls(fields['text']),
                matched_categories=card.categories,
            ),
        )


# ============================================================================
# EMAIL
# ============================================================================

EMAIL_PATTERN = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')
FULL_NAME_PATTERN = re.compile(r'^[a-z]+[._][a-z]+$')

# Points removed from the perfect score of 100
PENALTIES = {
    'invalid_format': 50,
    'reputation_bad': 30,
    'reputation_suspicious': 15,
    'breach_history': 20,
    'spam_listed': 25,
    'missing_spf': 10,
    'missing_dmarc': 5,
}


class EmailEnrichment:
    """Joined results of the email enrichment lookups."""

    def __init__(self, mx: DnsLookup, spf: DnsLookup, dmarc: DnsLookup,
                 dnsbl: DnsLookup, breaches: BreachLookup):
        self.mx = mx
        self.spf = spf
        self.dmarc = dmarc
        self.dnsbl = dnsbl
        self.breaches = breaches

    @property
    def has_mx(self) -> bool:
        return bool(self.mx.records)

    @property
    def has_spf(self) -> bool:
        return any(r.lower().startswith('v=spf1') for r in self.spf.records)

    @property
    def has_dmarc(self) -> bool:
        return any(r.lower().startswith('v=dmarc1') for r in self.dmarc.records)

    @property
    def spam_listed(self) -> bool:
        return bool(self.dnsbl.records)

    @property
    def dns_available(self) -> bool:
        return self.mx.ok and self.spf.ok and self.dmarc.ok


class EmailAnalyzer:
    def __init__(self, catalog: Optional[RuleCatalog] = None,
                 intel: Optional[ThreatIntelligence] = None,
                 extractor: Optional[IOCExtractor] = None,
                 timeout: Optional[float] = None,
                 fallback_seed: Optional[int] = None):
        """
        Args:
            catalog: Email rule catalog (subtractive)
            intel: DNS resolver and breach database collaborator
            extractor: Input preparation
            timeout: Bounded wait per enrichment lookup, in seconds
            fallback_seed: Seed for the simulated breach fallback
        """
        self.extractor = extractor or IOCExtractor()
        self.intel = intel or ThreatIntelligence()
        self.timeout = timeout or settings.ENRICHMENT_TIMEOUT
        self.fallback_seed = settings.FALLBACK_SEED if fallback_seed is None else fallback_seed
        self.scorer = RuleBasedScorer(
            catalog or build_catalogs().email,
            EMAIL_THRESHOLDS,
            RecommendationGenerator(EMAIL_RECOMMENDATIONS, affirmation=EMAIL_AFFIRMATION),
        )
        self.pentest = PentestAnalyzer()

    async def analyze(self, email: str) -> EmailAssessment:
        fields = self.extractor.prepare_email(email)
        if not fields['text']:
            return EmailAssessment()

        address, domain = fields['text'], fields['domain']
        valid_format = bool(EMAIL_PATTERN.match(address))

        indicators = self.scorer.match(fields)
        categories = {i.category for i in indicators}
        disposable = 'disposable_domain' in categories
        public_provider = 'public_provider' in categories

        # Lookups only make sense for a syntactically valid address
        enrichment = await self.enrich(address, domain) if valid_format else None

        reputation = self._domain_reputation(disposable, public_provider, enrichment)
        adjustments = self._adjustments(valid_format, reputation, enrichment)

        card = self.scorer.score(fields, adjustments, affirm_when_clean=True, indicators=indicators)

        breaches = enrichment.breaches.breaches if enrichment else []
        facts = {
            'public_provider': public_provider,
            'disposable': disposable,
            'personal_info': 'personal_info' in categories,
            'full_name': bool(FULL_NAME_PATTERN.match(fields['username'])),
            'weak_username': 'weak_username' in categories,
            'breached': bool(breaches),
            'missing_spf': bool(enrichment) and not enrichment.has_spf,
            'missing_dmarc': bool(enrichment) and not enrichment.has_dmarc,
            'spam_listed': bool(enrichment) and enrichment.spam_listed,
        }

        checks = EmailChecks(
            valid_format=valid_format,
            domain_reputation=reputation,
            breach_history=bool(breaches),
            spam_listed=facts['spam_listed'],
            mx_records=enrichment.has_mx if enrichment else None,
            spf_record=enrichment.has_spf if enrichment else None,
            dmarc_record=enrichment.has_dmarc if enrichment else None,
            dns_health=(enrichment.has_mx and enrichment.dns_available) if enrichment else None,
        )

        details = EmailDetails(
            provider=self._provider(domain, disposable),
            risk_level=card.classification.tier.value,
            last_breach_date=max((b.date for b in breaches), default=None),
            breaches=breaches,
            checks=checks,
            pentest=self.pentest.assess(facts),
            adjustments=card.adjustments,
            is_simulated=bool(enrichment) and enrichment.breaches.is_simulated,
            dns_available=enrichment.dns_available if enrichment else False,
        )

        return EmailAssessment(
            email=address,
            score=card.score,
            tier=card.classification.tier,
            label=card.classification.label,
            indicators=card.indicators,
            recommendations=card.recommendations,
            category=card.classification.label,
            metadata=details,
        )

    async def enrich(self, address: str, domain: str) -> EmailEnrichment:
        """
        Run the independent lookups concurrently; each one falls back on
        failure or timeout, so the join always completes.
        """
        no_records = lambda: DnsLookup(ok=False)
        mx, spf, dmarc, dnsbl, breaches = await asyncio.gather(
            self._bounded("MX lookup", self.intel.resolve, domain, 'MX', fallback=no_records),
            self._bounded("SPF lookup", self.intel.resolve, domain, 'TXT', fallback=no_records),
            self._bounded("DMARC lookup", self.intel.resolve, f"_dmarc.{domain}", 'TXT', fallback=no_records),
            self._bounded("Blocklist lookup", self.intel.check_dnsbl, domain, fallback=no_records),
            self._bounded("Breach lookup", self.intel.lookup_breaches, address,
                          fallback=lambda: simulated_breach_lookup(address, self.fallback_seed)),
        )
        return EmailEnrichment(mx, spf, dmarc, dnsbl, breaches)

    async def _bounded(self, name: str, func, *args, fallback):
        try:
            return await asyncio.wait_for(asyncio.to_thread(func, *args), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning(f"⚠️ {name} timed out after {self.timeout}s, using fallback")
        except Exception as e:
            # Enrichment must never fail the assessment
            logger.error(f"❌ {name} failed: {e}")
        return fallback()

    @staticmethod
    def _domain_reputation(disposable: bool, public_provider: bool,
                           enrichment: Optional[EmailEnrichment]) -> str:
        if disposable:
            return 'bad'
        if not public_provider and enrichment is not None and not enrichment.has_mx:
            return 'suspicious'
        return 'good'

    @staticmethod
    def _adjustments(valid_format: bool, reputation: str,
                     enrichment: Optional[EmailEnrichment]) -> List[ScoreAdjustment]:
        adjustments = []
        if not valid_format:
            adjustments.append(ScoreAdjustment(
                key='invalid_format', delta=-PENALTIES['invalid_format'], label="Invalid email format"))
        if reputation != 'good':
            adjustments.append(ScoreAdjustment(
                key='domain_reputation', delta=-PENALTIES[f'reputation_{reputation}'],
                label=f"Domain reputation: {reputation}"))
        if enrichment is None:
            return adjustments

        breach_count = len(enrichment.breaches.breaches)
        if breach_count:
            adjustments.append(ScoreAdjustment(
                key='breach_history', delta=-PENALTIES['breach_history'],
                label=f"Found in {breach_count} data breach(es)"))
        if enrichment.spam_listed:
            adjustments.append(ScoreAdjustment(
                key='spam_listed', delta=-PENALTIES['spam_listed'], label="Domain listed on a spam blocklist"))
        if not enrichment.has_spf:
            adjustments.append(ScoreAdjustment(
                key='missing_spf', delta=-PENALTIES['missing_spf'], label="No SPF record"))
        if not enrichment.has_dmarc:
            adjustments.append(ScoreAdjustment(
                key='missing_dmarc', delta=-PENALTIES['missing_dmarc'], label="No DMARC record"))
        return adjustments

    @staticmethod
    def _provider(domain: str, disposable: bool) -> str:
        if domain in PUBLIC_PROVIDERS:
            return PUBLIC_PROVIDERS[domain]
        if disposable:
            return 'Temporary Email'
        return 'Unknown Provider'


# ============================================================================
# SERVICE
# ============================================================================

class AnalysisService:
    """
    Owns the three analyzers, built once from a validated catalog bundle,
    and the in-memory scan history of the session.
    """

    def __init__(self, catalogs: Optional[CatalogBundle] = None,
                 intel: Optional[ThreatIntelligence] = None,
                 history_limit: Optional[int] = None,
                 clock: Optional[Clock] = None):
        self.catalogs = catalogs or build_catalogs(settings.INTEL_DB_PATH)
        validate_bundle(self.catalogs)

        self.clock = clock or utc_now
        extractor = IOCExtractor()
        self.url_analyzer = UrlAnalyzer(self.catalogs.url, extractor, clock=self.clock)
        self.message_analyzer = MessageAnalyzer(self.catalogs.message, extractor)
        self.email_analyzer = EmailAnalyzer(self.catalogs.email, intel=intel, extractor=extractor)

        self.history = deque(maxlen=history_limit or settings.HISTORY_LIMIT)

    def scan_url(self, url: str) -> UrlAssessment:
        result = self.url_analyzer.analyze(url)
        self._record('url', url, result)
        return result

    def scan_message(self, text: str) -> MessageAssessment:
        result = self.message_analyzer.analyze(text)
        self._record('message', text, result)
        return result

    async def scan_email(self, email: str) -> EmailAssessment:
        result = await self.email_analyzer.analyze(email)
        self._record('email', email, result)
        return result

    def get_history(self) -> List[ScanHistoryEntry]:
        return list(self.history)

    def clear_history(self):
        self.history.clear()

    def catalog_summary(self) -> Dict:
        summary = {'version': self.catalogs.version, 'catalogs': {}}
        for catalog in (self.catalogs.url, self.catalogs.message, self.catalogs.email):
            summary['catalogs'][catalog.domain] = {
                'polarity': catalog.polarity.value,
                'categories': {c.name: len(c.rules) for c in catalog.categories},
            }
        return summary

    def _record(self, kind: str, raw_input: str, result):
        # Null results (empty input) are not scans
        if result.is_null:
            return
        self.history.appendleft(ScanHistoryEntry(
            id=f"scan_{uuid.uuid4().hex[:12]}",
            kind=kind,
            input=raw_input,
            assessment=result,
            scanned_at=self.clock(),
        ))
