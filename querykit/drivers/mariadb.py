"""
QueryKit Drivers — MariaDB.

Same wire dialect as MySQL; differs in identifier rules and a few
MariaDB-only error numbers.
"""

from __future__ import annotations

from .base import DriverCapabilities
from .mysql import MySQLDriver, _ERRORS
from ..faults import LockTimeoutFault, ValidationFault

__all__ = ["MariaDBDriver"]


class MariaDBDriver(MySQLDriver):
    """MariaDB 10.x driver."""

    capabilities = DriverCapabilities(
        supports_cte=False,
        supports_returning=False,
        supports_full_join=False,
        supports_replace=True,
        param_style="qmark",
        max_identifier_length=64,
        name="mariadb",
    )
    error_map = {
        **_ERRORS,
        1969: LockTimeoutFault,  # ER_STATEMENT_TIMEOUT (max_statement_time)
    }

    def validate_identifier_part(self, part: str, full_name: str) -> None:
        super().validate_identifier_part(part, full_name)
        if part != part.rstrip():
            raise ValidationFault(
                f"Malformed identifier {full_name!r}: names cannot end with whitespace",
                field=full_name,
            )
