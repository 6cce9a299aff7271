from malwareguard.core.rule_catalog import ThresholdTable
from malwareguard.schemas import Classification


class TierClassifier:
    """Maps a bounded score to a tier using one domain's threshold table."""

    def __init__(self, table: ThresholdTable):
        self.table = table

    def classify(self, score: int) -> Classification:
        # Bands are inclusive on their lower bound and ordered high to low
        for band in self.table.bands:
            if score >= band.minimum:
                return Classification(score=score, tier=band.tier, label=band.label)
        lowest = self.table.bands[-1]
        return Classification(score=score, tier=lowest.tier, label=lowest.label)

    @property
    def top_label(self) -> str:
        return self.table.bands[0].label
