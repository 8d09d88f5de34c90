"""
Industry Report Adapter

There is no open API for analyst reports, so report entries are
simulated from curated market data. Results are deterministic for a
given domain and year and are marked with source_provider=simulated.

Usage:
    from app.pipelines.sources.reports import ReportAdapter

    adapter = ReportAdapter()
    reports = await adapter.collect("machine learning")
"""

from datetime import datetime, timezone
from typing import Optional

from app.enums.ingestion import SourceCategory, SourceProvider
from app.models.sources import ReportItem
from app.pipelines.base import BaseSourceAdapter, matched_keywords
from app.pipelines.utils.hash_utils import calculate_content_hash, seeded_rng
from app.services.ingestion.catalog import REPORT_COMPANIES, REPORT_MARKET_DATA, REPORT_TYPES

MAX_REPORT_AGE_YEARS = 3

DEFAULT_MARKET_DATA = {
    "trends": ["Cloud adoption", "Automation", "Open-source tooling"],
    "growth": "20-30%",
    "challenges": ["Skills gap", "Integration complexity", "Cost management"],
}


def market_data_for(domain: str) -> dict:
    domain_lower = domain.lower()
    matches = [key for key in REPORT_MARKET_DATA if key in domain_lower]
    if matches:
        return REPORT_MARKET_DATA[max(matches, key=len)]
    return DEFAULT_MARKET_DATA


def simulate_reports(domain: str, term: str, now: Optional[datetime] = None) -> list[ReportItem]:
    """
    Deterministic report entries for one domain and search term.

    Args:
        domain: Domain being ingested
        term: Search term the reports are attributed to
        now: Reference time for report years

    Returns:
        Between three and six unscored ReportItems
    """
    now = now or datetime.now(timezone.utc)
    rng = seeded_rng(domain, term)
    market = market_data_for(domain)
    reports = []

    for _ in range(rng.randint(3, 6)):
        company = rng.choice(REPORT_COMPANIES)
        report_type = rng.choice(REPORT_TYPES)
        year = now.year - rng.choice([0, 1])
        trend = rng.choice(market["trends"])
        challenge = rng.choice(market["challenges"])
        title = f"{domain.title()} {report_type} {year}"

        findings = [
            f"{domain.title()} market projected to grow {market['growth']} annually",
            f"{rng.randint(45, 85)}% of enterprises plan to increase {term} investment",
            f"{trend} identified as key trend",
            f"{challenge} remains primary challenge",
        ]
        summary = (
            f"Comprehensive {report_type.lower()} examining {term} adoption, trends, "
            "and market dynamics across industries."
        )
        url = f"https://reports.example.com/{calculate_content_hash(f'{company}|{title}|{term}')[:12]}"

        reports.append(
            ReportItem(
                title=title,
                url=url,
                summary=summary,
                published_at=datetime(year, 1, 1, tzinfo=timezone.utc),
                company=company,
                year=year,
                key_findings=findings,
                search_term=term,
                source_provider=SourceProvider.SIMULATED,
                keywords=matched_keywords(f"{title} {summary} {' '.join(findings)}", domain),
            )
        )

    return reports


class ReportAdapter(BaseSourceAdapter):
    """Simulated industry reports, limited to the last three years."""

    CATEGORY = SourceCategory.REPORTS
    MAX_QUERIES = 2

    async def fetch_items(self, domain: str, queries: list[str]) -> list[ReportItem]:
        now = datetime.now(timezone.utc)
        reports: dict[str, ReportItem] = {}

        for term in queries:
            for report in simulate_reports(domain, term, now):
                if now.year - report.year <= MAX_REPORT_AGE_YEARS:
                    reports.setdefault(report.url, report)

        return list(reports.values())
