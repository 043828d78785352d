"""
event_scoring/services/csv_service.py
CSV interchange: parse uploads, validate rows against an import schema,
export records and generate import templates.

Validation never raises per row. A bad row contributes nothing to the
accepted data and one or more errors to the report; later rows are still
checked.
"""
import csv
import io
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

from pydantic import EmailStr, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from event_scoring.errors import ErrorCode, ValidationError
from event_scoring.orm.user import UserRole

logger = logging.getLogger(__name__)

_email_adapter = TypeAdapter(EmailStr)


def normalize_email(value: str) -> str:
    """Validated, lowercased address. Raises ValueError when malformed."""
    value = value.strip()
    try:
        _email_adapter.validate_python(value)
    except PydanticValidationError as e:
        raise ValueError(f"Invalid email address '{value}'") from e
    return value.lower()


def clean_email(value: Any) -> Optional[str]:
    """normalize_email for a single record field: blank is None, malformed raises ValidationError."""
    if value is None or str(value).strip() == "":
        return None
    try:
        return normalize_email(str(value))
    except ValueError:
        raise ValidationError(
            "Invalid email format",
            code=ErrorCode.INVALID_FORMAT,
            details={"field": "email", "value": value}
        )


# Data row n (0-based) sits on line n + 2: one for 1-based, one for the header
HEADER_OFFSET = 2

FALSE_VALUES = {"false", "0"}
TRUE_VALUES = {"true", "1"}


@dataclass(frozen=True)
class FieldRule:
    """How one column is checked and normalized."""
    name: str
    required: bool = False
    kind: str = "text"  # text | email | enum | integer | boolean
    choices: Tuple[str, ...] = ()
    default: Any = None


@dataclass(frozen=True)
class ImportSchema:
    name: str
    fields: Tuple[FieldRule, ...]

    @property
    def required_fields(self) -> List[str]:
        return [f.name for f in self.fields if f.required]

    @property
    def columns(self) -> List[str]:
        return [f.name for f in self.fields]


USER_IMPORT_SCHEMA = ImportSchema(
    name="users",
    fields=(
        FieldRule("email", required=True, kind="email"),
        FieldRule("name", required=True),
        FieldRule("role", required=True, kind="enum", choices=tuple(r.value for r in UserRole)),
        FieldRule("password"),
        FieldRule("phone"),
        FieldRule("active", kind="boolean", default=True),
    ),
)

JUDGE_IMPORT_SCHEMA = ImportSchema(
    name="judges",
    fields=(
        FieldRule("name", required=True),
        FieldRule("email", required=True, kind="email"),
        FieldRule("phone"),
        FieldRule("bio"),
        FieldRule("certified", kind="boolean", default=False),
    ),
)

CONTESTANT_IMPORT_SCHEMA = ImportSchema(
    name="contestants",
    fields=(
        FieldRule("name", required=True),
        FieldRule("contest_id", required=True, kind="integer"),
        FieldRule("email", kind="email"),
        FieldRule("number", kind="integer"),
        FieldRule("bio"),
    ),
)

IMPORT_SCHEMAS = {
    schema.name: schema
    for schema in (USER_IMPORT_SCHEMA, JUDGE_IMPORT_SCHEMA, CONTESTANT_IMPORT_SCHEMA)
}

TEMPLATE_SAMPLES: Dict[str, Dict[str, str]] = {
    "users": {
        "email": "example@example.com",
        "name": "John Doe",
        "role": "JUDGE",
        "password": "",
        "phone": "555-1234",
        "active": "true",
    },
    "judges": {
        "name": "Judge Name",
        "email": "judge@example.com",
        "phone": "555-5678",
        "bio": "Optional biography",
        "certified": "false",
    },
    "contestants": {
        "name": "Jane Smith",
        "contest_id": "1",
        "email": "jane@example.com",
        "number": "1",
        "bio": "Optional biography",
    },
}


@dataclass
class ParsedCSV:
    headers: List[str]
    rows: List[Dict[str, str]]

    def __iter__(self) -> Iterator[Dict[str, str]]:
        return iter(self.rows)

    def __len__(self) -> int:
        return len(self.rows)


@dataclass(frozen=True)
class CSVRowError:
    row: int
    field: str
    error: str
    value: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return {"row": self.row, "field": self.field, "error": self.error, "value": self.value}


@dataclass
class CSVImportResult:
    total: int = 0
    successful: int = 0
    failed: int = 0
    errors: List[CSVRowError] = field(default_factory=list)
    data: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "successful": self.successful,
            "failed": self.failed,
            "errors": [e.to_dict() for e in self.errors],
            "data": self.data,
        }


class CSVService:
    """CSV parsing, validation and export"""

    @classmethod
    def parse_csv(cls, buffer: Union[bytes, str]) -> ParsedCSV:
        """
        Parse an uploaded CSV into header + row dicts.

        - UTF-8, byte-order mark stripped
        - Blank lines and lines starting with '#' are skipped
        - The first remaining line is the header
        - Every cell is trimmed
        - Rows shorter than the header are padded with "", longer ones truncated
        """
        if isinstance(buffer, bytes):
            try:
                text = buffer.decode("utf-8-sig")
            except UnicodeDecodeError as e:
                raise ValidationError(
                    f"Failed to parse CSV: file is not valid UTF-8 ({e.reason})",
                    code=ErrorCode.CSV_INVALID
                )
        else:
            text = buffer.lstrip("\ufeff")

        try:
            records = [
                [cell.strip() for cell in record]
                for record in csv.reader(io.StringIO(text))
            ]
        except csv.Error as e:
            raise ValidationError(f"Failed to parse CSV: {e}", code=ErrorCode.CSV_INVALID)

        records = [
            record for record in records
            if any(record) and not record[0].startswith("#")
        ]

        if not records:
            return ParsedCSV(headers=[], rows=[])

        headers = records[0]
        rows = []
        for record in records[1:]:
            row = {}
            for index, header in enumerate(headers):
                if not header:
                    continue
                row[header] = record[index] if index < len(record) else ""
            rows.append(row)

        logger.info(f"CSV parsed successfully: {len(rows)} rows, {len(headers)} columns")
        return ParsedCSV(headers=[h for h in headers if h], rows=rows)

    @classmethod
    def check_headers(cls, headers: Sequence[str], schema: ImportSchema) -> None:
        """Fail the whole file if a required column is absent; extras are fine."""
        present = set(headers)
        missing = [name for name in schema.required_fields if name not in present]
        if missing:
            raise ValidationError(
                f"Missing required columns: {', '.join(missing)}",
                code=ErrorCode.CSV_INVALID,
                details={"missing_columns": missing, "schema": schema.name}
            )

    @classmethod
    def validate_rows(cls, rows: Sequence[Mapping[str, Any]], schema: ImportSchema) -> CSVImportResult:
        """
        Validate and normalize each row independently.

        Returns:
            CSVImportResult whose data holds normalized accepted rows only
        """
        result = CSVImportResult(total=len(rows))

        for index, row in enumerate(rows):
            row_number = index + HEADER_OFFSET
            row_errors: List[CSVRowError] = []
            normalized: Dict[str, Any] = {}

            for rule in schema.fields:
                raw = row.get(rule.name)
                value = raw.strip() if isinstance(raw, str) else raw

                if value is None or value == "":
                    if rule.required:
                        row_errors.append(CSVRowError(
                            row=row_number,
                            field=rule.name,
                            error="Required field is missing or empty",
                            value=raw
                        ))
                        continue
                    normalized[rule.name] = rule.default
                    continue

                checked, error = cls._check_value(rule, str(value))
                if error:
                    row_errors.append(CSVRowError(row=row_number, field=rule.name, error=error, value=raw))
                else:
                    normalized[rule.name] = checked

            if row_errors:
                result.failed += 1
                result.errors.extend(row_errors)
            else:
                result.successful += 1
                result.data.append(normalized)

        logger.info(
            f"{schema.name} import validation completed: total={result.total} "
            f"successful={result.successful} failed={result.failed}"
        )
        return result

    @staticmethod
    def _check_value(rule: FieldRule, value: str) -> Tuple[Any, Optional[str]]:
        if rule.kind == "email":
            try:
                return normalize_email(value), None
            except ValueError:
                return None, "Invalid email format"

        if rule.kind == "enum":
            upper = value.upper()
            if upper not in rule.choices:
                return None, f"Invalid {rule.name}. Must be one of: {', '.join(rule.choices)}"
            return upper, None

        if rule.kind == "integer":
            try:
                return int(value), None
            except ValueError:
                return None, f"{rule.name} must be a valid integer"

        if rule.kind == "boolean":
            lowered = value.lower()
            if lowered in FALSE_VALUES:
                return False, None
            if lowered in TRUE_VALUES:
                return True, None
            return rule.default, None

        return value, None

    @classmethod
    def export_to_csv(
        cls,
        data: Sequence[Any],
        columns: Sequence[str],
        headers: Optional[Sequence[Optional[str]]] = None
    ) -> str:
        """
        Render records (dicts or objects) as CSV.

        Args:
            data: records to export
            columns: field names, in output order
            headers: optional labels, positionally matched to columns
        """
        labels = [
            headers[i] if headers and i < len(headers) and headers[i] else column
            for i, column in enumerate(columns)
        ]

        out = io.StringIO()
        writer = csv.writer(out, lineterminator="\n")
        writer.writerow(labels)
        for record in data:
            writer.writerow([cls._format_cell(cls._read_field(record, c)) for c in columns])

        logger.info(f"CSV export completed: {len(data)} records")
        return out.getvalue()

    @staticmethod
    def _read_field(record: Any, column: str) -> Any:
        if isinstance(record, Mapping):
            return record.get(column)
        return getattr(record, column, None)

    @staticmethod
    def _format_cell(value: Any) -> str:
        if value is None:
            return ""
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, (datetime, date)):
            return value.isoformat()
        return str(value)

    @classmethod
    def generate_template(cls, kind: str) -> str:
        """Sample CSV for an import kind (users, judges, contestants)."""
        schema = IMPORT_SCHEMAS.get(kind)
        if schema is None:
            raise ValidationError(
                f"Unknown template type '{kind}'. Must be one of: {', '.join(IMPORT_SCHEMAS)}",
                code=ErrorCode.INVALID_FORMAT
            )
        return cls.export_to_csv([TEMPLATE_SAMPLES[kind]], schema.columns)
