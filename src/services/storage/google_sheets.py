"""
Google Sheets Audit Log Storage

The audit trail is mirrored to a worksheet so group members can read
the history of fund credits without database access.

Sheets has no transactions or conditional updates, so it never holds
goals or groups. Rows are only ever appended; queries read the whole
sheet and filter in Python. Blocking gspread calls run on a worker
thread.
"""

import asyncio
import json
from datetime import datetime
from typing import Callable, Optional
from uuid import UUID

import gspread
import structlog
from google.oauth2.service_account import Credentials
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from src.config import GoogleSheetsSettings, get_settings
from src.models.audit import AuditEvent, AuditEventType, AuditSeverity
from src.services.storage.interface import (
    AuditStorageInterface,
    StorageError,
    StoreUnavailableError,
)


logger = structlog.get_logger(__name__)

SCOPES = (
    "https://www.googleapis.com/auth/spreadsheets",
    "https://www.googleapis.com/auth/drive",
)

# Header row of the audit worksheet, same order as AuditEvent.to_sheets_row()
AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "entity_type",
    "entity_id",
    "user_id",
    "correlation_id",
    "description",
    "details_json",
    "error_message",
    "is_user_action",
]

# Quota and backend errors from the Sheets API are worth another try
_sheets_retry = retry(
    retry=retry_if_exception_type(gspread.exceptions.APIError),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
    reraise=True,
)


class GoogleSheetsClient:
    """Opens the audit worksheet once and appends to / reads from it."""

    def __init__(self, settings: Optional[GoogleSheetsSettings] = None):
        self._settings = settings or get_settings().google_sheets
        self._worksheet: Optional[gspread.Worksheet] = None

    def audit_worksheet(self) -> gspread.Worksheet:
        """The audit worksheet, created with a header row on first use."""
        if self._worksheet is not None:
            return self._worksheet

        try:
            credentials = Credentials.from_service_account_file(
                self._settings.credentials_path, scopes=list(SCOPES)
            )
            spreadsheet = gspread.authorize(credentials).open_by_key(
                self._settings.spreadsheet_id
            )
        except FileNotFoundError as e:
            raise StoreUnavailableError(
                f"Google credentials file not found: {self._settings.credentials_path}"
            ) from e
        except gspread.SpreadsheetNotFound as e:
            raise StoreUnavailableError(
                f"Spreadsheet not found: {self._settings.spreadsheet_id}"
            ) from e
        except (ValueError, gspread.exceptions.GSpreadException) as e:
            raise StoreUnavailableError(f"Failed to open audit spreadsheet: {e}") from e

        try:
            worksheet = spreadsheet.worksheet(self._settings.audit_sheet_name)
        except gspread.WorksheetNotFound:
            logger.info("audit_worksheet_created", title=self._settings.audit_sheet_name)
            worksheet = spreadsheet.add_worksheet(
                title=self._settings.audit_sheet_name,
                rows=5000,
                cols=len(AUDIT_COLUMNS),
            )
            worksheet.append_row(AUDIT_COLUMNS)

        self._worksheet = worksheet
        return worksheet

    @_sheets_retry
    def append_row(self, values: list) -> None:
        # RAW keeps ids and ISO timestamps from being reformatted by Sheets
        self.audit_worksheet().append_row(values, value_input_option="RAW")

    @_sheets_retry
    def read_rows(self) -> list[list[str]]:
        """Every data row, header excluded."""
        return self.audit_worksheet().get_all_values()[1:]


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """Append-only audit storage backed by one worksheet."""

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    @staticmethod
    def _row_to_event(row: list) -> AuditEvent:
        cells = list(row) + [""] * (len(AUDIT_COLUMNS) - len(row))

        def optional_uuid(value: str) -> Optional[UUID]:
            return UUID(value) if value else None

        return AuditEvent(
            event_id=UUID(cells[0]),
            timestamp=datetime.fromisoformat(cells[1]),
            event_type=AuditEventType(cells[2]),
            severity=AuditSeverity(cells[3]),
            entity_type=cells[4] or None,
            entity_id=optional_uuid(cells[5]),
            user_id=optional_uuid(cells[6]),
            correlation_id=optional_uuid(cells[7]),
            description=cells[8],
            details=json.loads(cells[9]) if cells[9] else {},
            error_message=cells[10] or None,
            is_user_action=cells[11].lower() == "true",
        )

    async def _read_events(self, keep: Callable[[list], bool]) -> list[AuditEvent]:
        """Parse every well-formed row accepted by `keep`, oldest first."""
        try:
            rows = await asyncio.to_thread(self._client.read_rows)
        except gspread.exceptions.APIError as e:
            raise StorageError(f"Failed to read audit events: {e}") from e

        events = []
        for row in rows:
            if not row or not row[0] or not keep(row):
                continue
            try:
                events.append(self._row_to_event(row))
            except ValueError:
                logger.warning("audit_row_malformed", event_id=row[0])
        events.sort(key=lambda e: e.timestamp)
        return events

    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append one event.

        Returns False once the retries are exhausted; the main flow
        never fails because the audit sheet is unreachable.
        """
        try:
            await asyncio.to_thread(self._client.append_row, event.to_sheets_row())
        except (gspread.exceptions.APIError, StorageError) as e:
            logger.warning(
                "audit_sheet_write_failed",
                error=str(e),
                event_id=str(event.event_id),
            )
            return False
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        wanted = str(correlation_id)
        return await self._read_events(lambda row: len(row) > 7 and row[7] == wanted)

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        wanted = str(entity_id)
        return await self._read_events(
            lambda row: len(row) > 5 and row[4] == entity_type and row[5] == wanted
        )

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Newest first."""
        events = await self._read_events(lambda row: True)
        events.reverse()
        return events[:limit]
