import re
from typing import Dict, List, Optional

from malwareguard.core.rule_catalog import RuleCatalog, RuleCategory, RuleEntry, RuleKind
from malwareguard.schemas import Indicator


class IndicatorMatcher:
    """
    Tests prepared input fields against a rule catalog.

    Pure: the same fields and catalog always give the same indicators, in
    catalog scan order. Every matching rule yields one indicator; rules in
    the same category stack. Categorical categories stop at their first
    match, and within an exclusive group only the first matching category
    contributes.
    """

    def match(self, fields: Dict[str, str], catalog: RuleCatalog) -> List[Indicator]:
        sign = catalog.polarity.sign
        indicators: List[Indicator] = []
        suppressed = set()

        for category in catalog.categories:
            if category.name in suppressed:
                continue

            found = self._match_category(fields, category, sign)
            if not found:
                continue

            indicators.extend(found)
            for group in catalog.exclusive_groups:
                if category.name in group:
                    suppressed.update(group[group.index(category.name) + 1:])

        return indicators

    def _match_category(self, fields: Dict[str, str], category: RuleCategory, sign: int) -> List[Indicator]:
        found = []
        for rule in category.rules:
            matches = self._test(rule, fields.get(rule.field, ""))
            if matches is None:
                continue
            found.append(Indicator(
                category=category.name,
                label=self._render_label(rule.label or category.title, matches),
                weight_contribution=sign * rule.weight,
            ))
            if category.categorical:
                break
        return found

    def _test(self, rule: RuleEntry, value: str) -> Optional[List[str]]:
        """Return the distinct matched terms, or None when the rule does not match"""
        if not value:
            return None

        if rule.kind is RuleKind.KEYWORD:
            return [rule.pattern] if rule.pattern.lower() in value.lower() else None

        if rule.kind is RuleKind.DOMAIN:
            host = value.lower()
            domain = rule.pattern.lower()
            if host == domain or host.endswith('.' + domain):
                return [domain]
            return None

        terms = []
        for m in re.finditer(rule.pattern, value, re.IGNORECASE):
            term = m.group(0).strip()
            if term and term not in terms:
                terms.append(term)
        return terms or None

    @staticmethod
    def _render_label(template: str, matches: List[str]) -> str:
        if '{matches}' in template:
            return template.replace('{matches}', ', '.join(matches))
        return template
