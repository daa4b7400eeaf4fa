"""Services — CSV import/export."""

from compliance_tracker.services.csv_service import (
    CSV_HEADER,
    export_requirements_csv,
    parse_row,
    read_rows,
)

__all__ = ["CSV_HEADER", "export_requirements_csv", "parse_row", "read_rows"]
