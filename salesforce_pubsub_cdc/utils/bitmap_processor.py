"""
Converts the bitmap encoding used by Change Data Capture headers
(changedFields, nulledFields, diffFields) into field names.

A top-level entry looks like "0x1A": bit i set means schema field i.
Compound fields use "<parent position>-<bitmap>", where the bitmap indexes
the fields of the nested record at that position.
"""

from typing import List

import avro.schema
from bitstring import BitArray


def process_bitmap(avro_schema: avro.schema.RecordSchema, bitmap_fields: List[str]) -> List[str]:
    """
    Expand bitmap entries into field names, in schema order.

    Entries that are not bitmaps (already plain field names) are passed
    through unchanged.
    """
    fields = []
    for bitmap_field in bitmap_fields:
        if bitmap_field is None:
            continue
        if bitmap_field.startswith("0x"):
            fields.extend(get_fieldnames_from_bitstring(bitmap_field, avro_schema))
        elif "-" in bitmap_field:
            parent_pos, nested_bitmap = bitmap_field.split("-", 1)
            parent_field = avro_schema.fields[int(parent_pos)]
            child_schema = get_value_schema(parent_field.type)
            if child_schema.type == "record":
                nested_names = get_fieldnames_from_bitstring(
                    nested_bitmap, child_schema
                )
                fields.extend(f"{parent_field.name}.{name}" for name in nested_names)
        else:
            fields.append(bitmap_field)
    return fields


def convert_hexbinary_to_bitset(bitmap: str) -> str:
    """Bit string of a "0x.." bitmap, least significant bit first."""
    bit_array = BitArray(hex=bitmap[2:])
    return bit_array.bin[::-1]


def get_fieldnames_from_bitstring(bitmap: str, avro_schema: avro.schema.RecordSchema) -> List[str]:
    fields_list = list(avro_schema.fields)
    binary_string = convert_hexbinary_to_bitset(bitmap)
    names = []
    for index, bit in enumerate(binary_string):
        if bit != "1":
            continue
        if index >= len(fields_list):
            raise ValueError(
                f"Bitmap {bitmap} references field {index}, schema has {len(fields_list)}"
            )
        names.append(fields_list[index].name)
    return names


def get_value_schema(parent_schema: avro.schema.Schema) -> avro.schema.Schema:
    """Unwrap the nullable unions used for compound fields."""
    if parent_schema.type == "union":
        schemas = parent_schema.schemas
        if len(schemas) == 2 and schemas[0].type == "null":
            return schemas[1]
        if len(schemas) == 2 and schemas[0].type == "string":
            return schemas[1]
        if (
            len(schemas) == 3
            and schemas[0].type == "null"
            and schemas[1].type == "string"
        ):
            return schemas[2]
    return parent_schema
