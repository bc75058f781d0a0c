"""
Utils package
"""
from .data_utils import (
    engine_error_response,
    error_response,
    get_image_bytes,
    get_request_data,
    parse_date,
)

__all__ = [
    'engine_error_response',
    'error_response',
    'get_image_bytes',
    'get_request_data',
    'parse_date',
]
