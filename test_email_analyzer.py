import time

import pytest

from conftest import FakeIntel
from malwareguard.core.recommendations import EMAIL_AFFIRMATION
from malwareguard.core.threat_intel import simulated_breach_lookup
from malwareguard.schemas import RiskTier
from malwareguard.services.analysis_service import EmailAnalyzer


class SlowIntel(FakeIntel):
    def lookup_breaches(self, email):
        time.sleep(0.5)
        return super().lookup_breaches(email)


class TestEmailAnalyzer:
    @pytest.mark.asyncio
    async def test_disposable_address_is_danger(self):
        analyzer = EmailAnalyzer(intel=FakeIntel())
        result = await analyzer.analyze("test@10minutemail.com")

        assert result.label == "danger"
        assert result.tier == RiskTier.HIGH
        assert result.metadata.checks.domain_reputation == "bad"
        assert result.metadata.provider == "Temporary Email"
        assert result.metadata.risk_level == "High"
        assert result.score == 20

    @pytest.mark.asyncio
    async def test_disposable_address_is_danger_even_with_healthy_dns(self):
        analyzer = EmailAnalyzer(intel=FakeIntel(healthy=('10minutemail.com',)))
        result = await analyzer.analyze("test@10minutemail.com")

        assert result.metadata.checks.domain_reputation == "bad"
        assert result.metadata.checks.mx_records is True
        assert result.label == "danger"
        # Disposable indicator (-25) and bad reputation (-30) both apply, plus weak username (-10)
        assert result.score == 35
        assert [i.weight_contribution for i in result.indicators if i.category == 'disposable_domain'] == [-25]
        assert [a.delta for a in result.metadata.adjustments] == [-30]

    @pytest.mark.asyncio
    async def test_inner_whitespace_fails_the_syntax_check(self):
        intel = FakeIntel()
        result = await EmailAnalyzer(intel=intel).analyze("k8r2 x9q@gmail.com")

        assert result.email == "k8r2 x9q@gmail.com"
        assert result.metadata.checks.valid_format is False
        assert result.score == 50
        assert result.label == "warning"
        assert EMAIL_AFFIRMATION not in result.recommendations
        assert "Use a valid email format" in result.recommendations
        assert intel.calls == []

    @pytest.mark.asyncio
    async def test_clean_address_is_affirmed(self):
        analyzer = EmailAnalyzer(intel=FakeIntel())
        result = await analyzer.analyze("K8R2X9Q@Gmail.com ")

        assert result.email == "k8r2x9q@gmail.com"
        assert result.score == 100
        assert result.label == "safe"
        assert result.tier == RiskTier.LOW
        assert result.recommendations == [EMAIL_AFFIRMATION]
        assert result.metadata.provider == "Google Gmail"
        checks = result.metadata.checks
        assert checks.valid_format and checks.mx_records and checks.spf_record and checks.dmarc_record
        assert checks.dns_health is True
        assert result.metadata.is_simulated is False
        assert result.metadata.dns_available is True

    @pytest.mark.asyncio
    async def test_breached_address(self):
        intel = FakeIntel(breached=('k8r2x9q@gmail.com',))
        result = await EmailAnalyzer(intel=intel).analyze("k8r2x9q@gmail.com")

        assert result.score == 80
        assert result.metadata.checks.breach_history is True
        assert result.metadata.last_breach_date == "2016-05-18"
        assert [b.name for b in result.metadata.breaches] == ["Adobe", "LinkedIn"]
        assert "Consider changing your password and enable 2FA" in result.recommendations
        assert EMAIL_AFFIRMATION not in result.recommendations
        assert result.metadata.pentest.data_exposure is True

    @pytest.mark.asyncio
    async def test_unknown_domain_without_mx_is_suspicious(self):
        result = await EmailAnalyzer(intel=FakeIntel()).analyze("k8r2x9q@nowhere-corp.test")

        checks = result.metadata.checks
        assert checks.domain_reputation == "suspicious"
        assert checks.mx_records is False
        # -15 reputation, -10 SPF, -5 DMARC
        assert result.score == 70
        assert result.label == "warning"
        assert result.metadata.provider == "Unknown Provider"

    @pytest.mark.asyncio
    async def test_spam_listed_domain(self):
        intel = FakeIntel(healthy=('example.com',), spam=('example.com',))
        result = await EmailAnalyzer(intel=intel).analyze("k8r2x9q@example.com")

        assert result.metadata.checks.spam_listed is True
        assert result.score == 75
        assert "This email may be flagged by spam filters" in result.recommendations

    @pytest.mark.asyncio
    async def test_invalid_format_skips_enrichment(self):
        intel = FakeIntel()
        result = await EmailAnalyzer(intel=intel).analyze("not-an-email")

        assert intel.calls == []
        assert result.metadata.checks.valid_format is False
        assert result.metadata.checks.mx_records is None
        assert result.score == 50
        assert result.label == "warning"
        assert "Use a valid email format" in result.recommendations

    @pytest.mark.asyncio
    async def test_enrichment_runs_every_lookup(self):
        intel = FakeIntel()
        await EmailAnalyzer(intel=intel).analyze("k8r2x9q@gmail.com")

        assert set(intel.calls) == {
            ('gmail.com', 'MX'),
            ('gmail.com', 'TXT'),
            ('_dmarc.gmail.com', 'TXT'),
            ('gmail.com', 'DNSBL'),
            ('k8r2x9q@gmail.com', 'BREACH'),
        }

    @pytest.mark.asyncio
    async def test_dns_outage_is_reported(self):
        result = await EmailAnalyzer(intel=FakeIntel(dns_down=True)).analyze("k8r2x9q@gmail.com")

        assert result.metadata.dns_available is False
        assert result.metadata.checks.dns_health is False
        # Public providers keep a good reputation without MX answers
        assert result.metadata.checks.domain_reputation == "good"

    @pytest.mark.asyncio
    async def test_breach_failure_falls_back_to_simulation(self):
        intel = FakeIntel(breach_error=RuntimeError("connection reset"))
        result = await EmailAnalyzer(intel=intel, fallback_seed=7).analyze("k8r2x9q@gmail.com")

        expected = simulated_breach_lookup("k8r2x9q@gmail.com", 7)
        assert result.metadata.is_simulated is True
        assert result.metadata.breaches == expected.breaches

    @pytest.mark.asyncio
    async def test_slow_lookup_times_out_to_fallback(self):
        analyzer = EmailAnalyzer(intel=SlowIntel(), timeout=0.05, fallback_seed=7)
        result = await analyzer.analyze("k8r2x9q@gmail.com")

        assert result.metadata.is_simulated is True
        assert result.metadata.checks.mx_records is True

    @pytest.mark.asyncio
    async def test_empty_input_gives_null_result(self):
        intel = FakeIntel()
        result = await EmailAnalyzer(intel=intel).analyze("   ")

        assert result.is_null
        assert result.metadata is None
        assert intel.calls == []

    @pytest.mark.asyncio
    async def test_analysis_is_idempotent_with_fixed_enrichment(self):
        analyzer = EmailAnalyzer(intel=FakeIntel(breached=('admin@example.com',)))
        first = await analyzer.analyze("admin@example.com")
        second = await analyzer.analyze("admin@example.com")
        assert first == second

    @pytest.mark.asyncio
    async def test_more_findings_never_raise_the_score(self):
        clean = await EmailAnalyzer(intel=FakeIntel()).analyze("k8r2x9q@example.com")
        worse = await EmailAnalyzer(intel=FakeIntel(breached=('k8r2x9q@example.com',))).analyze(
            "k8r2x9q@example.com")
        assert worse.score <= clean.score


class TestSimulatedBreaches:
    def test_fallback_is_deterministic_per_seed(self):
        assert simulated_breach_lookup("a@gmail.com", 1) == simulated_breach_lookup("a@gmail.com", 1)

    def test_fallback_is_always_flagged(self):
        for i in range(20):
            assert simulated_breach_lookup(f"user{i}@example.com", 3).is_simulated is True
