from typing import Dict, Iterable, List, Tuple

from malwareguard.core.rule_catalog import (
    CatalogBundle,
    validate_catalog,
    validate_thresholds,
    URL_THRESHOLDS,
    MESSAGE_THRESHOLDS,
    EMAIL_THRESHOLDS,
)

# ============================================================================
# ADVICE TABLES (finding key -> advice)
# ============================================================================

URL_RECOMMENDATIONS: Dict[str, Tuple[str, ...]] = {
    'malicious_domain': (
        "Do not visit this website - it is a known security threat",
        "If you already entered information on this site, change your passwords immediately",
    ),
    'suspicious_domain': ("Expand shortened links before opening them to see the real destination",),
    'malicious_keyword': ("The address contains terms associated with scams or malware - avoid it",),
    'insecure_protocol': ("Avoid entering personal information on unencrypted (HTTP) pages",),
    'login_path': ("Only sign in through the official website or app, never through a link you received",),
    'payment_path': ("Verify the merchant before entering any payment details",),
    'ip_host': ("Legitimate services rarely use raw IP addresses - do not trust this link",),
    'numeric_sequence': ("Be cautious of URLs containing long numeric strings",),
    'urgency_keyword': ("Urgent wording in a link is a common phishing tactic",),
    'subdomain_depth': ("Check the real domain name - deep subdomains are often used to disguise phishing sites",),
}

MESSAGE_RECOMMENDATIONS: Dict[str, Tuple[str, ...]] = {
    'urgency': ("Be wary of messages that pressure you to act immediately",),
    'financial': ("Never send money or payment details in response to an unsolicited message",),
    'credential': ("Never share passwords, PINs or one-time codes - legitimate companies will not ask for them",),
    'threat': ("Check your account status through the organization's official website or app",),
    'suspicious_link': ("Do not click links in this message - type the official address into your browser instead",),
    'impersonation': ("Contact the company directly using its official contact details to confirm the message",),
    'grammar': ("Poor grammar and generic greetings are common signs of phishing",),
}

EMAIL_CHECK_KEYS = (
    'invalid_format',
    'domain_reputation',
    'breach_history',
    'spam_listed',
    'missing_spf',
    'missing_dmarc',
)

EMAIL_RECOMMENDATIONS: Dict[str, Tuple[str, ...]] = {
    'invalid_format': ("Use a valid email format",),
    'domain_reputation': ("Consider using a more reputable email provider",),
    'breach_history': ("Consider changing your password and enable 2FA",),
    'spam_listed': ("This email may be flagged by spam filters",),
    'missing_spf': ("Ask the domain owner to publish an SPF record to prevent spoofing",),
    'missing_dmarc': ("Ask the domain owner to publish a DMARC policy",),
    'disposable_domain': (
        "Disposable addresses expire - use a permanent address for important accounts",
        "Consider using a more reputable email provider",
    ),
    'personal_info': ("Avoid personal details such as birth years or phone numbers in your address",),
    'weak_username': ("Generic usernames are easy targets for guessing and spam",),
}

EMAIL_AFFIRMATION = "Your email appears to be secure"


class RecommendationGenerator:
    """
    Static lookup from finding keys (catalog categories, failed checks)
    to advice, deduplicated in first-seen order.
    """

    def __init__(self, advice: Dict[str, Tuple[str, ...]], affirmation: str = None):
        self.advice = advice
        self.affirmation = affirmation

    def generate(self, finding_keys: Iterable[str], affirm: bool = False) -> List[str]:
        recommendations: List[str] = []
        seen_keys = set()

        for key in finding_keys:
            if key in seen_keys:
                continue
            seen_keys.add(key)
            for text in self.advice.get(key, ()):
                if text not in recommendations:
                    recommendations.append(text)

        if affirm and not seen_keys and self.affirmation:
            recommendations.append(self.affirmation)

        return recommendations


def validate_bundle(bundle: CatalogBundle) -> None:
    """
    Start-up validation of the catalogs against their advice tables

    Raises:
        CatalogValidationError: if any catalog or threshold table is inconsistent
    """
    validate_catalog(bundle.url, URL_RECOMMENDATIONS)
    validate_catalog(bundle.message, MESSAGE_RECOMMENDATIONS)
    validate_catalog(bundle.email, EMAIL_RECOMMENDATIONS, extra_keys=EMAIL_CHECK_KEYS)
    for table in (URL_THRESHOLDS, MESSAGE_THRESHOLDS, EMAIL_THRESHOLDS):
        validate_thresholds(table)
