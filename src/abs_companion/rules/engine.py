"""
Conversion Rule Engine
======================

Parses the conversion matrix and picks the target encoding for a source
stream.

Matching:
    1. Explicit rules are scanned in declaration order, first match wins
    2. If none match, the fallback action applies (if defined)
    3. A "copy" action resolves to the source's own codec/bitrate/channels

Parsing is lenient: malformed items are skipped with a debug log so that a
single typo in the matrix does not take the companion down.

A condition declared twice keeps its first action; later duplicates are
never reached.
"""

import logging
from typing import List, Optional

from abs_companion.models.rules import (
    WILDCARD,
    Condition,
    ConversionAction,
    ConversionRule,
    RuleTable,
)


logger = logging.getLogger(__name__)


ITEM_SEPARATOR = ","
ACTION_SEPARATOR = "="
FIELD_SEPARATOR = "|"


def parse_rule_table(text: Optional[str]) -> RuleTable:
    """
    Parse a conversion matrix string.

    Args:
        text: Matrix string, e.g. "0|1|48000|1|1=opus|24000|1,opus|64000|2"

    Returns:
        RuleTable with explicit rules in declaration order and an optional
        fallback. An all-wildcard condition is treated as the fallback; if
        several are declared the last one wins.
    """
    rules: List[ConversionRule] = []
    fallback: Optional[ConversionAction] = None

    if not text:
        return RuleTable()

    for item in text.split(ITEM_SEPARATOR):
        item = item.strip()
        if not item:
            continue

        if ACTION_SEPARATOR in item:
            condition_text, _, action_text = item.partition(ACTION_SEPARATOR)
            condition = _parse_condition(condition_text)
            action = _parse_action(action_text)
        else:
            # Bare action
            condition = Condition()
            action = _parse_action(item)

        if condition is None or action is None:
            logger.debug(f"Skipping malformed conversion rule: {item!r}")
            continue

        if condition.is_fallback:
            if fallback is not None:
                logger.warning(f"Fallback rule redefined by {item!r}")
            fallback = action
        else:
            rules.append(ConversionRule(condition=condition, action=action))

    return RuleTable(rules=tuple(rules), fallback=fallback)


def match(
    table: RuleTable,
    codec: str,
    bit_rate: int,
    channels: int,
) -> Optional[ConversionAction]:
    """
    Find the conversion for a source stream.

    Args:
        table: Parsed rule table
        codec: Source codec (compared case-insensitively)
        bit_rate: Source bitrate in bps
        channels: Source channel count

    Returns:
        The resolved ConversionAction, or None if nothing matches and there
        is no fallback
    """
    for rule in table.rules:
        if rule.condition.matches(codec, bit_rate, channels):
            return _resolve(rule.action, codec, bit_rate, channels)

    if table.fallback is not None:
        return _resolve(table.fallback, codec, bit_rate, channels)

    return None


def _resolve(
    action: ConversionAction,
    codec: str,
    bit_rate: int,
    channels: int,
) -> ConversionAction:
    if action.is_copy:
        return ConversionAction(codec=codec, bitrate=str(bit_rate), channels=str(channels))
    return action


def _parse_condition(text: str) -> Optional[Condition]:
    fields = [f.strip() for f in text.split(FIELD_SEPARATOR)]
    if len(fields) != 5 or not fields[0]:
        return None

    try:
        bounds = [int(f) for f in fields[1:]]
    except ValueError:
        return None

    if any(b < 0 for b in bounds):
        return None

    codec = fields[0] if fields[0] == WILDCARD else fields[0].lower()
    return Condition(codec, *bounds)


def _parse_action(text: str) -> Optional[ConversionAction]:
    fields = [f.strip() for f in text.split(FIELD_SEPARATOR)]
    if len(fields) != 3 or not all(fields):
        return None
    return ConversionAction(codec=fields[0], bitrate=fields[1], channels=fields[2])
