from typing import Dict
from carelink_log.interface.schema import EnumLiteral, LogSchemaDefinition
from carelink_log.formats.carelink import RAW_RECORD_SCHEMA
from carelink_log.formats.entries import ENTRY_SCHEMA, MOVING_AVERAGE_SCHEMA


class ExportTable(EnumLiteral):
    """Tables that can be written out from one ingested file."""
    ENTRIES = "entries"
    RAW = "raw"
    AVERAGES = "averages"


# Schema map for tabular export
SCHEMA_MAP: Dict[ExportTable, LogSchemaDefinition] = {
    ExportTable.ENTRIES: ENTRY_SCHEMA,
    ExportTable.RAW: RAW_RECORD_SCHEMA,
    ExportTable.AVERAGES: MOVING_AVERAGE_SCHEMA,
}
