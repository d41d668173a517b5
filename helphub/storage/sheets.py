"""
Хранилища заявок и волонтеров в Google Sheets.

Реализует механизм повторных попыток (retry) для повышения отказоустойчивости
и механизм блокировки (asyncio.Lock) для условной записи без состояния гонки.

Каждая сущность хранится одной строкой листа; первая строка содержит
заголовки (имена полей модели), первая колонка - идентификатор.
Значения ячеек записываются в JSON.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Any

import gspread
import requests.exceptions
from gspread.exceptions import APIError
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from helphub.models.request import ServiceRequest, utc_now
from helphub.models.volunteer import Volunteer
from helphub.storage.base import M, Repository, RequestRepository, VolunteerRepository

logger = logging.getLogger(__name__)

CREDENTIALS_FILE = Path(__file__).parent.parent.parent / "credentials.json"

SCOPES = ["https://www.googleapis.com/auth/spreadsheets"]


def is_retryable_gspread_error(exception: BaseException) -> bool:
    return isinstance(exception, APIError) and exception.response.status_code >= 500


sheets_retry = retry(
    retry=(
        retry_if_exception_type(requests.exceptions.RequestException)
        | retry_if_exception(is_retryable_gspread_error)
    ),
    wait=wait_exponential(multiplier=2, min=2, max=30),
    stop=stop_after_attempt(5),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)


def encode_record(data: dict[str, Any]) -> dict[str, str]:
    return {key: json.dumps(value, ensure_ascii=False) for key, value in data.items()}


def decode_record(row: dict[str, str]) -> dict[str, Any]:
    return {key: json.loads(value) for key, value in row.items() if value != ""}


class GoogleSheetsClient:
    """
    Класс для доступа к листам Google-таблицы.
    """

    def __init__(
        self,
        sheet_id: str,
        credentials_file: Path = CREDENTIALS_FILE,
        client: gspread.Client | None = None,
    ) -> None:
        logger.info("Initializing Google Sheets client...")
        if client is None:
            if not credentials_file.exists():
                logger.error(f"Credentials file not found at: {credentials_file}")
                raise FileNotFoundError(
                    f"Google credentials file not found at {credentials_file}"
                )
            client = gspread.service_account(
                filename=str(credentials_file), scopes=SCOPES
            )
        self.client = client
        self.sheet_id = sheet_id
        self.lock = asyncio.Lock()
        logger.info("Google Sheets client initialized successfully.")

    @sheets_retry
    def worksheet(self, title: str) -> gspread.Worksheet:
        """Открывает Google-таблицу и возвращает лист с указанным названием."""
        try:
            spreadsheet = self.client.open_by_key(self.sheet_id)
            return spreadsheet.worksheet(title)
        except gspread.exceptions.SpreadsheetNotFound:
            logger.error(f"Spreadsheet with ID '{self.sheet_id}' not found.")
            raise
        except gspread.exceptions.WorksheetNotFound:
            logger.error(f"Worksheet '{title}' not found in the spreadsheet.")
            raise


class _SheetsRepository(Repository[M]):
    model: type[M]
    worksheet_title: str

    def __init__(self, client: GoogleSheetsClient) -> None:
        self.sheets = client

    def _headers(self, worksheet: gspread.Worksheet) -> list[str]:
        headers = worksheet.row_values(1)
        if not headers:
            headers = list(self.model.model_fields)
            worksheet.append_row(headers)
            logger.info(f"Initialized headers of worksheet '{self.worksheet_title}'.")
            return headers
        missing = [field for field in self.model.model_fields if field not in headers]
        if missing:
            headers = headers + missing
            worksheet.update(range_name="A1", values=[headers])
            logger.info(
                f"Added columns {missing} to worksheet '{self.worksheet_title}'."
            )
        return headers

    def _to_row(self, item: M, headers: list[str]) -> list[str]:
        encoded = encode_record(item.model_dump(mode="json"))
        return [encoded.get(header, "") for header in headers]

    def _from_row(self, values: list[str], headers: list[str]) -> M:
        return self.model.model_validate(decode_record(dict(zip(headers, values))))

    @staticmethod
    def _find_row(worksheet: gspread.Worksheet, key: str) -> int | None:
        cell = worksheet.find(json.dumps(key), in_column=1)
        return cell.row if cell else None

    @sheets_retry
    async def get(self, key: str) -> M | None:
        worksheet = self.sheets.worksheet(self.worksheet_title)
        row = self._find_row(worksheet, key)
        if row is None:
            return None
        return self._from_row(worksheet.row_values(row), self._headers(worksheet))

    @sheets_retry
    async def list_all(self) -> list[M]:
        worksheet = self.sheets.worksheet(self.worksheet_title)
        rows = worksheet.get_all_values()
        if not rows:
            return []
        headers, records = rows[0], rows[1:]
        return [self._from_row(values, headers) for values in records if any(values)]

    @sheets_retry
    async def add(self, item: M) -> None:
        key = self.key_of(item)
        logger.info(f"Adding {self.entity_name} {key} to Google Sheet.")
        async with self.sheets.lock:
            logger.debug(f"Lock acquired for adding {self.entity_name} {key}.")
            try:
                worksheet = self.sheets.worksheet(self.worksheet_title)
                headers = self._headers(worksheet)
                if self._find_row(worksheet, key) is not None:
                    raise ValueError(f"{self.entity_name} {key} already exists")
                worksheet.append_row(self._to_row(item, headers))
                logger.info(f"{self.entity_name} {key} added successfully.")
            except ValueError:
                raise
            except Exception as e:
                logger.error(
                    f"Failed to add {self.entity_name} {key} to Google Sheet: {e}",
                    exc_info=True,
                )
                raise
        logger.debug(f"Lock released for adding {self.entity_name} {key}.")

    @sheets_retry
    async def delete(self, key: str) -> bool:
        logger.info(f"Attempting to delete {self.entity_name} {key} from Google Sheet.")
        async with self.sheets.lock:
            try:
                worksheet = self.sheets.worksheet(self.worksheet_title)
                row = self._find_row(worksheet, key)
                if row is None:
                    logger.warning(f"{self.entity_name} {key} not found for deletion.")
                    return False
                worksheet.delete_rows(row)
                logger.info(f"{self.entity_name} {key} deleted successfully.")
                return True
            except Exception as e:
                logger.error(
                    f"Failed to delete {self.entity_name} {key}: {e}", exc_info=True
                )
                raise

    @sheets_retry
    async def compare_and_swap(self, item: M) -> bool:
        key = self.key_of(item)
        async with self.sheets.lock:
            try:
                worksheet = self.sheets.worksheet(self.worksheet_title)
                row = self._find_row(worksheet, key)
                if row is None:
                    logger.warning(f"{self.entity_name} {key} not found for update.")
                    return False

                # Проверяем, что строку никто не изменил после нашего чтения
                headers = self._headers(worksheet)
                stored = self._from_row(worksheet.row_values(row), headers)
                if stored.version != item.version:
                    logger.warning(
                        f"{self.entity_name} {key} has version {stored.version}, "
                        f"expected {item.version}."
                    )
                    return False

                updated = item.model_copy(
                    update={"version": item.version + 1, "updated_at": utc_now()}
                )
                worksheet.update(
                    range_name=f"A{row}", values=[self._to_row(updated, headers)]
                )
                item.version = updated.version
                item.updated_at = updated.updated_at
                logger.debug(
                    f"{self.entity_name} {key} updated to version {item.version}."
                )
                return True
            except Exception as e:
                logger.error(
                    f"Failed to update {self.entity_name} {key}: {e}", exc_info=True
                )
                raise


class SheetsRequestRepository(_SheetsRepository, RequestRepository):
    model = ServiceRequest
    worksheet_title = "requests"


class SheetsVolunteerRepository(_SheetsRepository, VolunteerRepository):
    model = Volunteer
    worksheet_title = "volunteers"
