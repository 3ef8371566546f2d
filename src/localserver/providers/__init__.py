"""
LocalServer Response Providers

The provider contract consumed by the interception engine and the built-in
rule-driven implementation.
"""

from .base import (
    BodySource,
    HeaderSource,
    ResponseHead,
    ResponseProvider,
    RuleResponseProvider,
    Timing,
)
from .basic import (
    BasicResponseProvider,
    BytesBody,
    ErrorSource,
    FileBody,
    Header,
    body_source,
    header_source,
)

__all__ = [
    # Contract
    'ResponseProvider',
    'RuleResponseProvider',
    'HeaderSource',
    'BodySource',
    'ResponseHead',
    'Timing',

    # Built-in provider
    'BasicResponseProvider',
    'Header',
    'BytesBody',
    'FileBody',
    'ErrorSource',
    'header_source',
    'body_source',
]
