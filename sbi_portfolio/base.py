"""Abstract base scraper. Brokerage scrapers inherit from this."""

from __future__ import annotations

import abc
import logging
from datetime import datetime, timezone

from sbi_portfolio.errors import DeviceAuthTimeout, ScrapeError
from sbi_portfolio.models import Credentials, ScrapeResult, SyncResult, SyncStatus

logger = logging.getLogger(__name__)


class BaseScraper(abc.ABC):
    """Base class for all brokerage scrapers."""

    institution_name: str
    display_name: str
    scraper_type: str  # 'api', 'playwright'

    def __init__(self) -> None:
        self.logger = logging.getLogger(f"scraper.{self.institution_name}")
        self.last_result: ScrapeResult | None = None

    async def sync(self, credentials: Credentials | None) -> SyncResult:
        """Run a full scrape and report its outcome as a status record instead of raising."""
        result = SyncResult(
            institution_name=self.institution_name,
            status=SyncStatus.SYNCING,
            started_at=datetime.now(timezone.utc),
        )
        try:
            scraped = await self.scrape(credentials)
            self.last_result = scraped
            result.holdings_synced = len(scraped.portfolio.holdings)
            result.warnings = len(scraped.warnings)
            result.status = SyncStatus.SUCCESS

        except DeviceAuthTimeout as e:
            result.status = SyncStatus.DEVICE_AUTH_REQUIRED
            result.error_kind = e.kind
            result.error_message = str(e)
            self.logger.warning("Device authentication pending for %s, retry later", self.institution_name)

        except ScrapeError as e:
            result.status = SyncStatus.ERROR
            result.error_kind = e.kind
            result.error_message = str(e)
            self.logger.error("Sync failed for %s: [%s] %s", self.institution_name, e.kind, e)

        except Exception as e:
            result.status = SyncStatus.ERROR
            result.error_kind = "unexpected"
            result.error_message = str(e)
            self.logger.exception("Sync failed for %s", self.institution_name)

        finally:
            result.finished_at = datetime.now(timezone.utc)

        return result

    @abc.abstractmethod
    async def scrape(self, credentials: Credentials | None) -> ScrapeResult:
        """Authenticate, read every holdings page and build the portfolio snapshot."""
        ...
