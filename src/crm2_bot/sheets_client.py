import logging
import re
import threading

import httplib2
from google.auth.exceptions import TransportError
from google.oauth2.service_account import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from crm2_bot.config import Settings
from crm2_bot.errors import StoreError

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/spreadsheets"]

_UPDATED_ROW_RE = re.compile(r"!(?:[A-Z]+)(\d+)")
_CELL_RE = re.compile(r"^([A-Z]+)(\d+)$")


def _cell_index(cell: str) -> tuple[int, int]:
    """'B7' -> (column 1, row 6), both zero-based."""
    match = _CELL_RE.match(cell)
    if not match:
        raise ValueError(f"Not a single cell reference: {cell}")
    col = 0
    for ch in match.group(1):
        col = col * 26 + (ord(ch) - ord("A") + 1)
    return col - 1, int(match.group(2)) - 1


def _cell_value(value) -> dict:
    if isinstance(value, bool):
        return {"boolValue": value}
    if isinstance(value, (int, float)):
        return {"numberValue": value}
    return {"stringValue": str(value)}


class SheetsClient:
    """Thin synchronous wrapper over the Sheets v4 API for one spreadsheet."""

    def __init__(self, spreadsheet_id: str, credentials: Credentials):
        self.spreadsheet_id = spreadsheet_id
        self._creds = credentials
        # httplib2.Http is not thread-safe; callers run on worker threads
        self._lock = threading.Lock()
        self._build_service()

    @classmethod
    def from_settings(cls, settings: Settings) -> "SheetsClient":
        info = settings.service_account_info()
        if info is not None:
            creds = Credentials.from_service_account_info(info, scopes=SCOPES)
        else:
            creds = Credentials.from_service_account_file(
                settings.google_service_account_file, scopes=SCOPES
            )
        return cls(settings.spreadsheet_id, creds)

    def _build_service(self):
        service = build("sheets", "v4", credentials=self._creds, cache_discovery=False)
        self.sheet = service.spreadsheets()

    def _execute(self, request, what: str):
        with self._lock:
            try:
                return request.execute()
            except HttpError as e:
                logger.error(f"Sheets API error during {what}: {e}")
                raise StoreError(f"Sheets API error during {what}") from e
            except BrokenPipeError as e:
                # Stale connection; the next call gets a fresh one
                logger.error(f"Connection lost during {what}, rebuilding Sheets service")
                self._build_service()
                raise StoreError(f"Connection lost during {what}") from e
            except (OSError, httplib2.HttpLib2Error, TransportError) as e:
                logger.error(f"Sheets transport error during {what}: {e}")
                raise StoreError(f"Sheets transport error during {what}") from e

    def _range(self, sheet_name: str, range_str: str = "") -> str:
        quoted = "'" + sheet_name.replace("'", "''") + "'"
        return f"{quoted}!{range_str}" if range_str else quoted

    def get_values(self, sheet_name: str, range_str: str = "") -> list[list[str]]:
        result = self._execute(self.sheet.values().get(
            spreadsheetId=self.spreadsheet_id,
            range=self._range(sheet_name, range_str),
        ), f"read {sheet_name}")
        return result.get("values", [])

    def read_table(self, sheet_name: str) -> tuple[list[str], list[list[str]]]:
        """Return (header, data rows) for a whole sheet."""
        values = self.get_values(sheet_name)
        if not values:
            return [], []
        header = [str(h).strip() for h in values[0]]
        return header, values[1:]

    def append_rows(
        self,
        sheet_name: str,
        range_str: str,
        rows: list[list],
        value_input_option: str = "USER_ENTERED",
    ) -> int | None:
        """Append rows and return the number of the first row written."""
        result = self._execute(self.sheet.values().append(
            spreadsheetId=self.spreadsheet_id,
            range=self._range(sheet_name, range_str),
            valueInputOption=value_input_option,
            insertDataOption="INSERT_ROWS",
            body={"values": rows},
        ), f"append to {sheet_name}")
        updated = result.get("updates", {}).get("updatedRange", "")
        match = _UPDATED_ROW_RE.search(updated)
        return int(match.group(1)) if match else None

    def update_values(
        self,
        sheet_name: str,
        range_str: str,
        rows: list[list],
        value_input_option: str = "RAW",
    ):
        self._execute(self.sheet.values().update(
            spreadsheetId=self.spreadsheet_id,
            range=self._range(sheet_name, range_str),
            valueInputOption=value_input_option,
            body={"values": rows},
        ), f"update {sheet_name}!{range_str}")

    def sheet_ids(self) -> dict[str, int]:
        """Map of sheet title to numeric sheetId."""
        info = self._execute(
            self.sheet.get(spreadsheetId=self.spreadsheet_id), "read metadata"
        )
        return {
            s["properties"]["title"]: s["properties"]["sheetId"]
            for s in info.get("sheets", [])
            if "properties" in s
        }

    def add_sheet(self, title: str):
        self._execute(self.sheet.batchUpdate(
            spreadsheetId=self.spreadsheet_id,
            body={"requests": [{"addSheet": {"properties": {"title": title}}}]},
        ), f"create sheet {title}")
        logger.info(f"Created sheet {title}")

    def batch_edit(self, cell_updates: list[tuple[str, str, object]], row_deletions: list[tuple[str, int]]):
        """Set single cells, then delete 1-based rows, in one atomic batchUpdate.

        ``cell_updates`` holds ``(sheet, "B7", value)``; addresses refer to the
        layout before any deletion. Either every change lands or none does.
        """
        ids = self.sheet_ids()

        def sheet_id(name: str) -> int:
            if name not in ids:
                raise StoreError(f"Нет листа: {name}")
            return ids[name]

        requests = []
        for name, cell, value in cell_updates:
            col, row = _cell_index(cell)
            requests.append({"updateCells": {
                "range": {
                    "sheetId": sheet_id(name),
                    "startRowIndex": row,
                    "endRowIndex": row + 1,
                    "startColumnIndex": col,
                    "endColumnIndex": col + 1,
                },
                "rows": [{"values": [{"userEnteredValue": _cell_value(value)}]}],
                "fields": "userEnteredValue",
            }})
        for name, row in row_deletions:
            requests.append({"deleteDimension": {"range": {
                "sheetId": sheet_id(name),
                "dimension": "ROWS",
                "startIndex": row - 1,
                "endIndex": row,
            }}})
        if not requests:
            return
        self._execute(self.sheet.batchUpdate(
            spreadsheetId=self.spreadsheet_id,
            body={"requests": requests},
        ), "batch edit")
