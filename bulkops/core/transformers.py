"""Pure functions that shape records into Web API payloads and parse responses."""

from __future__ import annotations

import re
from datetime import UTC, datetime
from typing import Any

from bulkops.models.record import Record, RecordReference, RequestHints

SAMPLE_NAME_FIELD_SUFFIX = "_name"
UPDATED_SUFFIX = " Updated"

BYPASS_PLUGIN_HEADER = "MSCRM.BypassCustomPluginExecution"
DOP_HINT_HEADER = "x-ms-dop-hint"
ENTITY_ID_HEADER = "OData-EntityId"

LANGUAGE_CODE = 1033

# asyncoperation.statecode / statuscode values
ASYNC_STATE_COMPLETED = 3
ASYNC_STATUS_NAMES: dict[int, str] = {
    0: "WaitingForResources",
    10: "Waiting",
    20: "InProgress",
    21: "Pausing",
    22: "Canceling",
    30: "Succeeded",
    31: "Failed",
    32: "Canceled",
}

_GUID_PATTERN = re.compile(
    r"[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}"
)


def entity_set_name(logical_name: str) -> str:
    """Return the default entity set (collection) name for a table."""
    if logical_name.endswith("y") and logical_name[-2:-1] not in "aeiou":
        return f"{logical_name[:-1]}ies"
    if logical_name.endswith(("s", "x", "ch", "sh")):
        return f"{logical_name}es"
    return f"{logical_name}s"


def primary_key_name(logical_name: str) -> str:
    return f"{logical_name}id"


def primary_name_field(logical_name: str) -> str:
    """Primary name column of a custom table, e.g. sample_example -> sample_name."""
    prefix = logical_name.split("_", 1)[0]
    return f"{prefix}{SAMPLE_NAME_FIELD_SUFFIX}"


def build_sample_records(logical_name: str, count: int) -> list[Record]:
    """Build `count` unpersisted records named 'sample record 0000001' and up."""
    name_field = primary_name_field(logical_name)
    return [
        Record(table=logical_name, fields={name_field: f"sample record {i + 1:07d}"})
        for i in range(count)
    ]


def mark_records_updated(records: list[Record], suffix: str = UPDATED_SUFFIX) -> None:
    """Append the update suffix to every record's primary name value, in place."""
    for record in records:
        name_field = primary_name_field(record.table)
        record.fields[name_field] = f"{record.fields.get(name_field, '')}{suffix}"


def parse_entity_id(header_value: str | None) -> str | None:
    """Extract the record GUID from an OData-EntityId header value."""
    if not header_value:
        return None
    matches = _GUID_PATTERN.findall(header_value)
    return matches[-1].lower() if matches else None


def build_request_headers(hints: RequestHints | None) -> dict[str, str]:
    """Headers carrying request-level hints."""
    headers: dict[str, str] = {}
    if hints is None:
        return headers
    if hints.bypass_custom_processing:
        headers[BYPASS_PLUGIN_HEADER] = "true"
    headers.update(hints.extra)
    return headers


def build_request_params(hints: RequestHints | None) -> dict[str, str]:
    """Query parameters carrying request-level hints (the shared-variable tag)."""
    if hints is None or not hints.tag:
        return {}
    return {"tag": hints.tag}


def build_delete_multiple_payload(references: list[RecordReference]) -> dict[str, Any]:
    """Body of a DeleteMultiple action call."""
    return {
        "Targets": [
            {
                "@odata.type": f"Microsoft.Dynamics.CRM.{ref.table}",
                primary_key_name(ref.table): ref.id,
            }
            for ref in references
        ]
    }


def build_bulk_delete_payload(
    logical_name: str,
    ids: list[str],
    job_name: str,
    start_time: datetime | None = None,
) -> dict[str, Any]:
    """Body of a BulkDelete action selecting records by primary key."""
    start = start_time or datetime.now(UTC)
    return {
        "QuerySet": [
            {
                "EntityName": logical_name,
                "ColumnSet": {"AllColumns": False, "Columns": []},
                "Criteria": {
                    "FilterOperator": "And",
                    "Conditions": [
                        {
                            "AttributeName": primary_key_name(logical_name),
                            "Operator": "In",
                            "Values": [{"Value": record_id, "Type": "System.Guid"} for record_id in ids],
                        }
                    ],
                },
            }
        ],
        "JobName": job_name,
        "SendEmailNotification": False,
        "ToRecipients": [],
        "CCRecipients": [],
        "RecurrencePattern": "",
        "StartDateTime": start.isoformat(),
    }


def _label(text: str) -> dict[str, Any]:
    return {"LocalizedLabels": [{"Label": text, "LanguageCode": LANGUAGE_CODE}]}


def build_entity_metadata(schema_name: str, elastic: bool) -> dict[str, Any]:
    """EntityMetadata body for a user-owned example table with one name column."""
    prefix, _, display = schema_name.partition("_")
    return {
        "@odata.type": "Microsoft.Dynamics.CRM.EntityMetadata",
        "SchemaName": schema_name,
        "DisplayName": _label(display),
        "DisplayCollectionName": _label(f"{display}s"),
        "Description": _label(f"{display} table created by bulkops"),
        "OwnershipType": "UserOwned",
        "TableType": "Elastic" if elastic else "Standard",
        "IsActivity": False,
        "HasActivities": False,
        "HasNotes": False,
        "Attributes": [
            {
                "@odata.type": "Microsoft.Dynamics.CRM.StringAttributeMetadata",
                "AttributeType": "String",
                "AttributeTypeName": {"Value": "StringType"},
                "SchemaName": f"{prefix}_Name",
                "IsPrimaryName": True,
                "MaxLength": 100,
                "FormatName": {"Value": "Text"},
                "RequiredLevel": {"Value": "None"},
                "DisplayName": _label("Name"),
                "Description": _label(f"Primary name of the {display} record"),
            }
        ],
    }


def parse_error_body(body: Any) -> tuple[str | None, str | None]:
    """Extract (code, message) from a Web API error body."""
    if not isinstance(body, dict):
        return None, None
    error = body.get("error")
    if not isinstance(error, dict):
        return None, None
    return error.get("code"), error.get("message")


def async_status_name(statuscode: int | None) -> str:
    if statuscode is None:
        return "Unknown"
    return ASYNC_STATUS_NAMES.get(statuscode, f"Status{statuscode}")


def is_async_job_complete(statecode: int | None) -> bool:
    return statecode == ASYNC_STATE_COMPLETED
