"""
Mock calendar provider for running without Google or iCloud accounts.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List

from pendulum import DateTime

from ..domain.models import SourceTag

logger = logging.getLogger(__name__)

DEFAULT_DATA_FILE = Path(__file__).parent / "mock_calendar_data.json"


class MockCalendarProvider:
    """
    Provider that serves fixture payloads instead of calling a real API.

    The JSON fixture maps a source and a user id to payloads in the shape the
    real client returns: REST event mappings for ``google`` and iCalendar
    texts for ``apple``::

        {"google": {"alice": [{"id": "...", "start": "...", "end": "..."}]},
         "apple": {"alice": ["BEGIN:VCALENDAR..."]}}
    """

    def __init__(
        self,
        name: SourceTag,
        user_id: str,
        payloads: Iterable[Any] | None = None,
        data_file: Path | None = None,
    ):
        """
        Initialize the mock provider.

        Args:
            name: Source the payloads pretend to come from
            user_id: Participant whose payloads are served
            payloads: Explicit payloads; the data file is not read when given
            data_file: Fixture file (defaults to mock_calendar_data.json)
        """
        self.name = SourceTag(name)
        self.user_id = user_id
        self.fetch_count = 0
        if payloads is not None:
            self._payloads = list(payloads)
        else:
            self._payloads = self._load_payloads(data_file or DEFAULT_DATA_FILE)

    @classmethod
    def from_ics_files(cls, paths: Iterable[Path], user_id: str = "local") -> "MockCalendarProvider":
        """Serve the content of local ``.ics`` files as an apple calendar."""
        payloads = [Path(path).read_text(encoding="utf-8") for path in paths]
        return cls(SourceTag.APPLE, user_id, payloads=payloads)

    def _load_payloads(self, data_file: Path) -> List[Any]:
        """Load this user's payloads from the JSON fixture."""
        if not data_file.exists():
            logger.warning("Mock calendar data not found at %s", data_file)
            return []

        with open(data_file, "r", encoding="utf-8") as f:
            data: Dict[str, Dict[str, List[Any]]] = json.load(f)

        return list(data.get(self.name.value, {}).get(self.user_id, []))

    async def fetch(self, window_start: DateTime, window_end: DateTime) -> List[Any]:
        """
        Return the fixture payloads.

        Filtering to the window is left to the normalizer, as with the real
        providers whose servers may return neighbouring items.
        """
        self.fetch_count += 1
        logger.debug(
            "Serving %d mock %s payload(s) for %s (%s - %s)",
            len(self._payloads),
            self.name.value,
            self.user_id,
            window_start.to_date_string(),
            window_end.to_date_string(),
        )
        return list(self._payloads)
