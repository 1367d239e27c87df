"""
QueryKit Drivers — backend variants behind one contract.

``create_driver`` is the only place a driver-type string is inspected.
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Type

from ..config import BuilderConfig
from ..faults import UnsupportedDriverFault
from .base import Driver, DriverCapabilities
from .mysql import MySQLDriver
from .mariadb import MariaDBDriver
from .postgres import PostgresDriver

__all__ = [
    "Driver",
    "DriverCapabilities",
    "MySQLDriver",
    "MariaDBDriver",
    "PostgresDriver",
    "DRIVERS",
    "create_driver",
]

DRIVERS: Dict[str, Type[Driver]] = {
    "mysql": MySQLDriver,
    "mariadb": MariaDBDriver,
    "postgres": PostgresDriver,
    "postgresql": PostgresDriver,
}


def create_driver(driver_type: str, transport: Any, config: Optional[BuilderConfig] = None) -> Driver:
    """
    Instantiate the driver for ``driver_type``.

    Raises:
        UnsupportedDriverFault: unknown driver type
    """
    key = driver_type.lower() if isinstance(driver_type, str) else driver_type
    driver_cls = DRIVERS.get(key)
    if driver_cls is None:
        raise UnsupportedDriverFault(driver_type, supported=["mysql", "mariadb", "postgres"])
    return driver_cls(transport, config)
