"""Engine-wide settings."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import tzinfo


@dataclass(frozen=True)
class ORMSettings:
    """
    Immutable knobs shared by the registry and the execution facade.

    Attributes:
        time_zone: Zone that temporal values are converted into before
            being formatted for the driver. ``None`` keeps values as given.
        default_char_size: Size of char columns declared without ``size``.
        reverse_name_attempts: Numeric suffixes tried when a synthesized
            reverse field name collides with an existing field.
        mysql_engine: Storage engine appended to MySQL ``CREATE TABLE``.
        mysql_charset: Charset appended to MySQL ``CREATE TABLE``.
        log_sql: Emit every executed statement at DEBUG level.
    """

    time_zone: tzinfo | None = None
    default_char_size: int = 255
    reverse_name_attempts: int = 5
    mysql_engine: str = "InnoDB"
    mysql_charset: str = "utf8mb4"
    log_sql: bool = True


DEFAULT_SETTINGS = ORMSettings()
