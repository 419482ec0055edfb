"""
Bulk Member Import Service

Imports up to BULK_IMPORT_MAX_ROWS members into one pathway in a single
transaction.

Pipeline:
  1. Structural checks (pathway, row count, target stage) → ValidationError
  2. Per-row validation: names required, email syntax, column widths,
     dedup against the tenant and within the batch. Row problems are reported, never raised.
  3. Normalisation of gender / marital status / date of birth; unparsable
     values are dropped to None.
  4. Insert members + initial-placement history + system note, bump the
     tenant counter, commit.

CSV helpers (parse_csv / generate_csv_template) turn an uploaded sheet into
the same row dicts the JSON endpoint accepts.
"""

import csv
import io
import logging

from email_validator import EmailNotValidError
from flask import current_app
from sqlalchemy import select, text

from app.core.exceptions import ValidationError
from app.models import db
from app.models.member import Member, Note, SYSTEM_NOTE_PREFIX
from app.models.pathway import Stage
from app.services.helpers.scoped_queries import get_scoped
from app.services.helpers.transaction import atomic
from app.services.member_service import adjust_member_count, length_errors, normalize_email
from app.services.progression import place_member
from app.services.stage_service import get_first_stage, validate_pathway
from app.utils.helpers import parse_flexible_date, parse_gender, parse_marital_status

logger = logging.getLogger(__name__)

DEFAULT_MAX_ROWS = 2000


# ═══════════════════════════════════════════════════════════════
# CSV Template
# ═══════════════════════════════════════════════════════════════

CSV_TEMPLATE_HEADER = [
    "firstName", "lastName", "email", "phone", "dateOfBirth",
    "gender", "maritalStatus", "address", "city", "state", "zip",
]
CSV_TEMPLATE_EXAMPLE = [
    ["Ruth", "Okafor", "ruth.okafor@gracechurch.org", "555-0101", "14/03/1988",
     "F", "married", "12 Elm Street", "Springfield", "IL", "62701"],
    ["Daniel", "Reyes", "", "555-0102", "1995-07-30", "male", "S", "", "", "", ""],
]

# Header aliases → canonical camelCase row keys
_HEADER_ALIASES = {
    "firstname": "firstName", "first_name": "firstName", "first name": "firstName",
    "lastname": "lastName", "last_name": "lastName", "last name": "lastName",
    "email": "email", "e-mail": "email",
    "phone": "phone",
    "dateofbirth": "dateOfBirth", "date_of_birth": "dateOfBirth", "dob": "dateOfBirth",
    "gender": "gender",
    "maritalstatus": "maritalStatus", "marital_status": "maritalStatus",
    "address": "address",
    "city": "city",
    "state": "state",
    "zip": "zip", "zipcode": "zip", "zip_code": "zip",
}


def generate_csv_template() -> str:
    """Generate a CSV template string for bulk member import."""
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(CSV_TEMPLATE_HEADER)
    writer.writerows(CSV_TEMPLATE_EXAMPLE)
    return output.getvalue()


def parse_csv(file_content: str | bytes) -> list[dict]:
    """
    Parse CSV content into row dicts keyed like the JSON import payload.
    Unknown columns are ignored; blank cells are omitted.
    """
    if isinstance(file_content, bytes):
        try:
            file_content = file_content.decode("utf-8-sig")  # Handle BOM
        except UnicodeDecodeError:
            raise ValidationError(
                "CSV must be UTF-8 encoded", details={"file": "not valid UTF-8"},
            ) from None

    reader = csv.DictReader(io.StringIO(file_content))
    fieldnames = reader.fieldnames or []
    mapping = {
        f: _HEADER_ALIASES[f.strip().lower()]
        for f in fieldnames
        if f and f.strip().lower() in _HEADER_ALIASES
    }
    if not {"firstName", "lastName"} <= set(mapping.values()):
        raise ValidationError(
            "CSV must have firstName and lastName columns. "
            f"Found columns: {', '.join(fieldnames)}"
        )

    rows = []
    for raw in reader:
        row = {}
        for header, key in mapping.items():
            value = (raw.get(header) or "").strip()
            if value:
                row[key] = value
        if row:
            rows.append(row)
    return rows


# ═══════════════════════════════════════════════════════════════
# Import
# ═══════════════════════════════════════════════════════════════

def _resolve_stage(tenant_id, pathway, stage_id):
    if stage_id is not None:
        return get_scoped(Stage, stage_id, tenant_id=tenant_id,
                          code="STAGE_NOT_FOUND", pathway=pathway)
    stage = get_first_stage(tenant_id, pathway)
    if stage is None:
        raise ValidationError(f"No stages configured for pathway {pathway}",
                              code="NO_STAGES_CONFIGURED")
    return stage


def _extend_statement_timeout():
    if db.session.get_bind().dialect.name != "postgresql":
        return
    timeout = int(current_app.config.get("BULK_IMPORT_STATEMENT_TIMEOUT_MS", 120000))
    db.session.execute(text(f"SET LOCAL statement_timeout = {timeout}"))


def _text(row, key):
    value = row.get(key)
    if value is None:
        return None
    return str(value).strip() or None


def _validate_rows(rows, existing_emails):
    """Split rows into member kwargs, skips and per-row errors."""
    valid = []
    errors = []
    skipped = 0
    seen = set()

    for index, row in enumerate(rows, start=1):
        if not isinstance(row, dict):
            errors.append({"row": index, "field": None, "message": "Row must be an object"})
            continue

        first_name = _text(row, "firstName")
        last_name = _text(row, "lastName")
        if not first_name:
            errors.append({"row": index, "field": "firstName", "message": "firstName is required"})
            continue
        if not last_name:
            errors.append({"row": index, "field": "lastName", "message": "lastName is required"})
            continue

        try:
            email = normalize_email(row.get("email"))
        except EmailNotValidError as exc:
            errors.append({"row": index, "field": "email", "message": f"Invalid email: {exc}"})
            continue

        fields = {
            "first_name": first_name,
            "last_name": last_name,
            "email": email,
            "phone": _text(row, "phone"),
            "date_of_birth": parse_flexible_date(row.get("dateOfBirth")),
            "gender": parse_gender(row.get("gender")),
            "marital_status": parse_marital_status(row.get("maritalStatus")),
            "address": _text(row, "address"),
            "city": _text(row, "city"),
            "state": _text(row, "state"),
            "zip": _text(row, "zip"),
        }
        too_long = length_errors(fields)
        if too_long:
            errors.extend(
                {"row": index, "field": field, "message": f"{field} is too long ({message})"}
                for field, message in too_long.items()
            )
            continue

        if email:
            if email in existing_emails or email in seen:
                skipped += 1
                continue
            seen.add(email)

        valid.append(fields)

    return valid, skipped, errors


def bulk_import_members(tenant_id, actor_user_id, pathway, rows, stage_id=None):
    """Import members into `pathway`, all on one stage.

    Args:
        rows: list of dicts with camelCase keys (firstName, lastName, email,
            phone, dateOfBirth, gender, maritalStatus, address, city, state, zip).
        stage_id: Target stage; defaults to the pathway's lowest-order stage.

    Returns:
        {"created": n, "skipped": n, "errors": [{"row", "field", "message"}], "stageId": id}

    Raises:
        ValidationError: bad pathway / empty or oversized batch / NO_STAGES_CONFIGURED
        NotFoundError: STAGE_NOT_FOUND
    """
    validate_pathway(pathway)
    max_rows = int(current_app.config.get("BULK_IMPORT_MAX_ROWS", DEFAULT_MAX_ROWS))
    if not isinstance(rows, list) or not rows:
        raise ValidationError("members must be a non-empty list", details={"members": "required"})
    if len(rows) > max_rows:
        raise ValidationError(
            f"Too many rows: {len(rows)} (max {max_rows})",
            details={"members": f"max {max_rows} rows"},
        )

    with atomic():
        _extend_statement_timeout()
        stage = _resolve_stage(tenant_id, pathway, stage_id)

        existing_emails = set(db.session.execute(
            select(Member.email).where(Member.tenant_id == tenant_id, Member.email.is_not(None))
        ).scalars())
        valid, skipped, errors = _validate_rows(rows, {e.lower() for e in existing_emails})

        note = f"{SYSTEM_NOTE_PREFIX} Member imported to {pathway} pathway"
        for fields in valid:
            member = Member(
                tenant_id=tenant_id,
                pathway=pathway,
                created_by_id=actor_user_id,
                **fields,
            )
            place_member(member, stage, actor_user_id)
            member.notes.append(Note(content=note, is_system=True, created_by_id=actor_user_id))

        adjust_member_count(tenant_id, len(valid))
        stage_id = stage.id

    logger.info(
        "Bulk import into %s: %d created, %d skipped, %d errors",
        pathway, len(valid), skipped, len(errors),
        extra={"tenant_id": tenant_id, "stage_id": stage_id},
    )
    return {
        "created": len(valid),
        "skipped": skipped,
        "errors": errors,
        "stageId": stage_id,
    }
