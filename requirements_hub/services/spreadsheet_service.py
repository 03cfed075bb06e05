"""
Spreadsheet Service — reads uploaded .xlsx workbooks into SheetRows.

The first sheet of the procurement template holds instructions and is
skipped. Cell values are passed through untouched; interpretation is the
extractor's job.
"""

from __future__ import annotations

import io
import zipfile
import logging
from pathlib import Path
from typing import BinaryIO, Union

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from requirements_hub.config import get_settings
from requirements_hub.exceptions import SpreadsheetError
from requirements_hub.models.schemas import SheetRow

logger = logging.getLogger(__name__)

WorkbookSource = Union[str, Path, bytes, BinaryIO]


class SpreadsheetService:
    """Turn a workbook into ordered SheetRows."""

    def __init__(self, skip_first_sheet: bool | None = None):
        if skip_first_sheet is None:
            skip_first_sheet = get_settings().skip_first_sheet
        self.skip_first_sheet = skip_first_sheet

    def read_rows(self, source: WorkbookSource) -> list[SheetRow]:
        if isinstance(source, bytes):
            source = io.BytesIO(source)

        try:
            workbook = load_workbook(source, read_only=True, data_only=True)
        except (InvalidFileException, zipfile.BadZipFile, OSError, KeyError, ValueError) as exc:
            raise SpreadsheetError(f"Could not read workbook: {exc}") from exc

        try:
            sheet_names = workbook.sheetnames
            logger.info(f"[SHEET] Workbook has {len(sheet_names)} sheets: {sheet_names}")

            rows: list[SheetRow] = []
            for order, name in enumerate(sheet_names):
                if order == 0 and self.skip_first_sheet:
                    logger.debug(f"[SHEET] Skipping instruction sheet '{name}'")
                    continue

                sheet_rows = [
                    SheetRow(sheet_name=name, sheet_order=order, sheet_row_index=index, cells=list(values))
                    for index, values in enumerate(workbook[name].iter_rows(values_only=True))
                ]
                if len(sheet_rows) < 2:
                    logger.debug(f"[SHEET] Skipping sheet '{name}': too few rows")
                    continue
                rows.extend(sheet_rows)
        finally:
            workbook.close()

        logger.info(f"[SHEET] Read {len(rows)} rows")
        return rows
