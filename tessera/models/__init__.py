"""
Tessera Models - model declaration, tag parsing and the model registry.

Provides:
- Model / column(): declaring mapped classes
- FieldType flags and Fielder value wrappers
- FieldInfo / ModelInfo metadata
- ModelCache registry with one-shot relation bootstrap
"""

from .base import Model, ColumnSpec, column
from .fields import (
    FieldType,
    IS_INTEGER_FIELD,
    IS_POSITIVE_INTEGER_FIELD,
    IS_REL_FIELD,
    IS_FIELD_TYPE,
    OD_CASCADE,
    OD_SET_NULL,
    OD_SET_DEFAULT,
    OD_DO_NOTHING,
    Fielder,
    BooleanField,
    CharField,
    TextField,
    TimeField,
    DateField,
    DateTimeField,
    FloatField,
    SmallIntegerField,
    IntegerField,
    BigIntegerField,
    PositiveSmallIntegerField,
    PositiveIntegerField,
    PositiveBigIntegerField,
    JSONField,
    JsonbField,
)
from .field_info import FieldInfo, Fields
from .model_info import ModelInfo, new_model_info, new_m2m_model_info
from .registry import (
    ModelCache,
    model_cache,
    register_model,
    register_model_with_prefix,
    register_model_with_suffix,
    bootstrap,
    reset_model_cache,
)
from .utils import (
    parse_tag,
    snake_string,
    snake_string_with_acronym,
    camel_string,
    set_name_strategy,
    get_full_name,
    get_table_name,
)

__all__ = [
    "Model",
    "ColumnSpec",
    "column",
    "FieldType",
    "IS_INTEGER_FIELD",
    "IS_POSITIVE_INTEGER_FIELD",
    "IS_REL_FIELD",
    "IS_FIELD_TYPE",
    "OD_CASCADE",
    "OD_SET_NULL",
    "OD_SET_DEFAULT",
    "OD_DO_NOTHING",
    "Fielder",
    "BooleanField",
    "CharField",
    "TextField",
    "TimeField",
    "DateField",
    "DateTimeField",
    "FloatField",
    "SmallIntegerField",
    "IntegerField",
    "BigIntegerField",
    "PositiveSmallIntegerField",
    "PositiveIntegerField",
    "PositiveBigIntegerField",
    "JSONField",
    "JsonbField",
    "FieldInfo",
    "Fields",
    "ModelInfo",
    "new_model_info",
    "new_m2m_model_info",
    "ModelCache",
    "model_cache",
    "register_model",
    "register_model_with_prefix",
    "register_model_with_suffix",
    "bootstrap",
    "reset_model_cache",
    "parse_tag",
    "snake_string",
    "snake_string_with_acronym",
    "camel_string",
    "set_name_strategy",
    "get_full_name",
    "get_table_name",
]
