from .processing import (
    apply_business_names,
    columnar_to_rows,
    limit_rows_and_size,
    mask_pii,
    parse_columnar_table,
    rows_to_columnar,
)

__all__ = [
    "apply_business_names",
    "columnar_to_rows",
    "limit_rows_and_size",
    "mask_pii",
    "parse_columnar_table",
    "rows_to_columnar",
]
