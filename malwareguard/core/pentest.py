from typing import Dict, List

from malwareguard.core.classifier import TierClassifier
from malwareguard.core.risk_scorer import score_facts
from malwareguard.core.rule_catalog import ThresholdBand, ThresholdTable
from malwareguard.schemas import PentestAssessment, RiskTier

PENTEST_TIERS = ThresholdTable(name="pentest", bands=(
    ThresholdBand(minimum=60, tier=RiskTier.HIGH, label="High"),
    ThresholdBand(minimum=30, tier=RiskTier.MEDIUM, label="Medium"),
    ThresholdBand(minimum=0, tier=RiskTier.LOW, label="Low"),
))

SOCIAL_ENGINEERING_WEIGHTS = (
    ('breached', 30),
    ('full_name', 25),
    ('personal_info', 20),
    ('weak_username', 20),
    ('public_provider', 15),
)

PHISHING_VULNERABILITY_WEIGHTS = (
    ('public_provider', 20),
    ('missing_dmarc', 20),
    ('breached', 20),
    ('missing_spf', 15),
    ('disposable', 15),
    ('spam_listed', 10),
    ('weak_username', 10),
)
PHISHING_VULNERABILITY_BASE = 10

ACCOUNT_TAKEOVER_WEIGHTS = (
    ('breached', 40),
    ('weak_username', 25),
    ('disposable', 20),
    ('personal_info', 15),
    ('missing_dmarc', 10),
)

FINDING_TEXT = {
    'breached': "Address appears in known data breaches",
    'full_name': "Username reveals a real name, useful for targeted pretexting",
    'personal_info': "Username exposes personal details",
    'weak_username': "Generic username is easy to guess or target",
    'disposable': "Disposable domain offers no account recovery",
    'missing_spf': "Domain can be spoofed (no SPF record)",
    'missing_dmarc': "Spoofed mail is not rejected (no DMARC policy)",
    'spam_listed': "Domain is on a spam blocklist",
}


class PentestAnalyzer:
    """
    Secondary assessment of how exposed an address is to social
    engineering and account takeover. Each sub-score has its own weights
    over the same boolean facts and never feeds the main email score.
    """

    def __init__(self):
        self.tiers = TierClassifier(PENTEST_TIERS)

    def assess(self, facts: Dict[str, bool]) -> PentestAssessment:
        social = score_facts(facts, SOCIAL_ENGINEERING_WEIGHTS)
        phishing = score_facts(facts, PHISHING_VULNERABILITY_WEIGHTS, base=PHISHING_VULNERABILITY_BASE)
        takeover = score_facts(facts, ACCOUNT_TAKEOVER_WEIGHTS)

        findings: List[str] = [text for fact, text in FINDING_TEXT.items() if facts.get(fact)]

        return PentestAssessment(
            social_engineering_risk=self.tiers.classify(social).label,
            data_exposure=bool(facts.get('breached') or facts.get('personal_info') or facts.get('full_name')),
            phishing_vulnerability=phishing,
            account_takeover_risk=self.tiers.classify(takeover).label,
            findings=findings,
        )
