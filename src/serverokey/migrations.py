"""
Additive, idempotent item migrations.

Each rule names a condition field and a patch: every item in ``items`` that
does not have the condition field as an own key receives every patch field.
Rules run on every read; once applied, the condition field is present and
the rule no longer matches.

Example:
    >>> migrator = Migrator([MigrationRule(condition_field="qty", patch={"qty": 1})])
    >>> migrator.migrate({"items": [{"id": 1}]})
    ({'items': [{'id': 1, 'qty': 1}]}, True)
"""

import copy
import logging
from typing import Any, Dict, Iterable, Optional, Tuple

from .exceptions import MigrationError
from .manifest import MigrationRule


logger = logging.getLogger(__name__)


class Migrator:
    """Apply migration rules to collection-shaped data."""

    def __init__(self, rules: Optional[Iterable[MigrationRule]] = None):
        self.rules = list(rules or [])

    def migrate(self, data: Dict[str, Any]) -> Tuple[Dict[str, Any], bool]:
        """
        Migrate ``data`` in place.

        Args:
            data: Connector value; only ``data["items"]`` is touched.

        Returns:
            Tuple of (data, changed).

        Raises:
            MigrationError: If an item is not a mapping.
        """
        if not self.rules or not isinstance(data, dict):
            return data, False
        items = data.get("items")
        if not isinstance(items, list):
            return data, False

        changed = False
        for rule in self.rules:
            for index, item in enumerate(items):
                if not isinstance(item, dict):
                    raise MigrationError(
                        f"Cannot migrate item {index}: expected an object, "
                        f"got {type(item).__name__}"
                    )
                if rule.condition_field in item:
                    continue
                for key, value in rule.patch.items():
                    item[key] = copy.deepcopy(value)
                changed = True

        if changed:
            logger.info(f"Applied migrations to {len(items)} item(s)")
        return data, changed
