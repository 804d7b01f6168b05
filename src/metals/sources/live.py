"""Ordered chain of live price sources; the first one that answers wins."""

from metals.exceptions import UpstreamUnavailable
from metals.logging import get_logger
from metals.models import LiveQuote
from metals.sources.client import LiveSpotSource

logger = get_logger(__name__)


class FallbackLiveSource(LiveSpotSource):
    """Tries each live source in order.

    Raises UpstreamUnavailable only when every source failed.
    """

    def __init__(self, sources: list[LiveSpotSource]) -> None:
        self._sources = sources

    @property
    def name(self) -> str:
        return "+".join(s.name for s in self._sources) or "none"

    async def fetch_live(self) -> LiveQuote:
        errors: list[str] = []
        for source in self._sources:
            try:
                quote = await source.fetch_live()
            except UpstreamUnavailable as e:
                logger.warning("live_source_failed", source=source.name, error=str(e))
                errors.append(str(e))
                continue
            logger.info("live_source_succeeded", source=source.name)
            return quote
        raise UpstreamUnavailable("all live sources failed: " + "; ".join(errors))
