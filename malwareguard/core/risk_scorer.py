from typing import Dict, List, Iterable, Optional, Sequence, Tuple

from malwareguard.core.classifier import TierClassifier
from malwareguard.core.matcher import IndicatorMatcher
from malwareguard.core.recommendations import RecommendationGenerator
from malwareguard.core.rule_catalog import RuleCatalog, ScorePolarity, ThresholdTable
from malwareguard.schemas import Classification, Indicator, ScoreAdjustment


class ScoreAggregator:
    """
    Raw weighted sum, clamped to [0, 100].

    Additive catalogs start from 0 and their indicators carry positive
    contributions; subtractive catalogs start from 100 and carry negative
    ones. No normalization by indicator count.
    """

    def __init__(self, polarity: ScorePolarity):
        self.polarity = polarity

    @property
    def base_score(self) -> int:
        return self.polarity.base_score

    def aggregate(self, indicators: Iterable[Indicator],
                  adjustments: Iterable[ScoreAdjustment] = ()) -> int:
        score = self.base_score
        score += sum(i.weight_contribution for i in indicators)
        score += sum(a.delta for a in adjustments)
        return clamp(score)


def clamp(score: int, low: int = 0, high: int = 100) -> int:
    return max(low, min(high, int(score)))


class ScoreCard:
    """Everything one scoring pass produced, before a facade shapes it."""

    def __init__(self, score: int, classification: Classification,
                 indicators: List[Indicator], adjustments: List[ScoreAdjustment],
                 recommendations: List[str]):
        self.score = score
        self.classification = classification
        self.indicators = indicators
        self.adjustments = adjustments
        self.recommendations = recommendations

    @property
    def categories(self) -> List[str]:
        seen = []
        for indicator in self.indicators:
            if indicator.category not in seen:
                seen.append(indicator.category)
        return seen

    @property
    def breakdown(self) -> Dict[str, int]:
        """Total contribution per category and per adjustment key"""
        totals: Dict[str, int] = {}
        for indicator in self.indicators:
            totals[indicator.category] = totals.get(indicator.category, 0) + indicator.weight_contribution
        for adjustment in self.adjustments:
            totals[adjustment.key] = totals.get(adjustment.key, 0) + adjustment.delta
        return totals


class RuleBasedScorer:
    """
    Matcher -> Aggregator -> Classifier -> Recommendation Generator for a
    single catalog and threshold table.

    Facades supply the prepared fields, their enrichment adjustments and
    the finding keys that should produce advice.
    """

    def __init__(self, catalog: RuleCatalog, thresholds: ThresholdTable,
                 recommender: RecommendationGenerator,
                 matcher: Optional[IndicatorMatcher] = None):
        self.catalog = catalog
        self.matcher = matcher or IndicatorMatcher()
        self.aggregator = ScoreAggregator(catalog.polarity)
        self.classifier = TierClassifier(thresholds)
        self.recommender = recommender
        self._benign = set(catalog.benign_categories())

    def match(self, fields: Dict[str, str]) -> List[Indicator]:
        return self.matcher.match(fields, self.catalog)

    def score(self, fields: Dict[str, str],
              adjustments: Sequence[ScoreAdjustment] = (),
              affirm_when_clean: bool = False,
              indicators: Optional[List[Indicator]] = None) -> ScoreCard:
        """
        Score prepared input fields

        Args:
            fields: Normalized fields keyed by name ('text', 'host', ...)
            adjustments: Enrichment and check deltas, applied after the indicators
            affirm_when_clean: Emit the affirmation when the score lands in the
                top band and nothing negative was found
            indicators: Result of an earlier match() on the same fields

        Returns:
            ScoreCard with score, classification, indicators and advice
        """
        if indicators is None:
            indicators = self.match(fields)
        adjustments = [a for a in adjustments if a.delta != 0]
        score = self.aggregator.aggregate(indicators, adjustments)
        classification = self.classifier.classify(score)

        finding_keys = self._finding_keys(indicators, adjustments)
        affirm = affirm_when_clean and classification.label == self.classifier.top_label
        recommendations = self.recommender.generate(finding_keys, affirm=affirm)

        return ScoreCard(score, classification, indicators, adjustments, recommendations)

    def threats(self, indicators: Iterable[Indicator]) -> List[str]:
        """Labels of indicators from non-benign categories"""
        return [i.label for i in indicators if i.category not in self._benign]

    def _finding_keys(self, indicators: List[Indicator],
                      adjustments: List[ScoreAdjustment]) -> List[str]:
        keys = [i.category for i in indicators if i.category not in self._benign]
        keys.extend(a.key for a in adjustments)
        return keys


def score_facts(facts: Dict[str, bool], weights: Sequence[Tuple[str, int]], base: int = 0) -> int:
    """Weighted sum of the true facts, clamped to [0, 100]"""
    return clamp(base + sum(weight for fact, weight in weights if facts.get(fact)))
