"""Export service - admin event reports as CSV, JSON or Excel"""

from __future__ import annotations

import csv
import io
import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Tuple

from openpyxl import Workbook
from openpyxl.styles import Alignment, Font, PatternFill
from sqlalchemy.orm import Session

from app.models.event import Event
from app.schemas.admin import AdminEventFilters, ExportFormat
from app.services.admin_event_service import AdminEventService
from app.services.scope_resolver import Scope

logger = logging.getLogger(__name__)

EXPORT_HEADERS = [
    "eventName", "description", "authorName", "authorRole", "type", "mode",
    "location", "meetingUrl", "capacity", "moderationStatus", "registrationCount",
    "startAt", "endAt", "tags", "createdAt",
]

MEDIA_TYPES = {
    ExportFormat.CSV: "text/csv; charset=utf-8",
    ExportFormat.JSON: "application/json",
    ExportFormat.XLSX: "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
}


def _fmt(value: datetime) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S") if value else ""


def export_row(event: Event) -> Dict[str, Any]:
    return {
        "eventName": event.title,
        "description": event.description,
        "authorName": event.author_name,
        "authorRole": event.author_role,
        "type": event.type,
        "mode": event.mode,
        "location": event.location or "N/A",
        "meetingUrl": event.meeting_url or "N/A",
        "capacity": event.capacity if event.capacity is not None else "Unlimited",
        "moderationStatus": event.moderation_status,
        "registrationCount": event.registration_count,
        "startAt": _fmt(event.start_at),
        "endAt": _fmt(event.end_at),
        "tags": ", ".join(event.tags or []),
        "createdAt": _fmt(event.created_at),
    }


class ExportService:
    """Service for generating admin event exports"""

    @staticmethod
    def collect_rows(db: Session, scope: Scope, filters: AdminEventFilters) -> List[Dict[str, Any]]:
        events = (
            AdminEventService.filtered_query(db, scope, filters)
            .order_by(Event.created_at.desc(), Event.id.asc())
            .all()
        )
        return [export_row(event) for event in events]

    @staticmethod
    def to_csv(rows: List[Dict[str, Any]]) -> bytes:
        buffer = io.StringIO()
        writer = csv.DictWriter(buffer, fieldnames=EXPORT_HEADERS)
        writer.writeheader()
        writer.writerows(rows)
        return ("\ufeff" + buffer.getvalue()).encode("utf-8")

    @staticmethod
    def to_json(rows: List[Dict[str, Any]]) -> bytes:
        document = {
            "success": True,
            "data": rows,
            "exported_at": datetime.utcnow().isoformat(),
            "total_records": len(rows),
        }
        return json.dumps(document, ensure_ascii=False, default=str).encode("utf-8")

    @staticmethod
    def to_xlsx(rows: List[Dict[str, Any]]) -> bytes:
        """
        Build an Excel workbook with one "Events" sheet

        Args:
            rows: Export rows keyed by EXPORT_HEADERS

        Returns:
            Workbook file content
        """
        wb = Workbook()
        ws = wb.active
        ws.title = "Events"
        ws.append(EXPORT_HEADERS)

        # Style headers
        header_fill = PatternFill(start_color="4472C4", end_color="4472C4", fill_type="solid")
        header_font = Font(bold=True, color="FFFFFF")
        for cell in ws[1]:
            cell.fill = header_fill
            cell.font = header_font
            cell.alignment = Alignment(horizontal="center", vertical="center")

        for row in rows:
            ws.append([row[header] for header in EXPORT_HEADERS])

        # Auto-adjust column widths
        for column in ws.columns:
            max_length = max(len(str(cell.value)) if cell.value is not None else 0 for cell in column)
            ws.column_dimensions[column[0].column_letter].width = min(max_length + 2, 50)

        output = io.BytesIO()
        wb.save(output)
        return output.getvalue()

    def export_events(
        self, db: Session, scope: Scope, filters: AdminEventFilters, fmt: ExportFormat
    ) -> Tuple[str, str, bytes]:
        """
        Export the filtered admin event list

        Returns:
            (filename, media type, content)
        """
        rows = self.collect_rows(db, scope, filters)
        if fmt == ExportFormat.JSON:
            content = self.to_json(rows)
        elif fmt == ExportFormat.XLSX:
            content = self.to_xlsx(rows)
        else:
            content = self.to_csv(rows)

        logger.info("Exported %d events for college %s as %s", len(rows), scope.college_id, fmt.value)
        return f"events-export.{fmt.value}", MEDIA_TYPES[fmt], content


export_service = ExportService()
