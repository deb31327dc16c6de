"""
Rules Module
============

Conversion matrix parsing and first-match lookup.
"""

from abs_companion.rules.engine import match, parse_rule_table


__all__ = [
    "match",
    "parse_rule_table",
]
