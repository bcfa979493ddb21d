"""Device record model and transport enum."""

import enum
from datetime import datetime

from sqlalchemy import Column
from sqlmodel import Field, SQLModel

from sightline.database import IntEnumType, UTCDateTime


class Transport(enum.IntEnum):
    radio = 0
    network = 1


# Stored for network records, which carry no RSSI
NO_SIGNAL = 0


class Device(SQLModel, table=True):
    identity: str = Field(primary_key=True)
    name: str | None = None  # never empty or a placeholder; None = not yet known
    transport: Transport = Field(sa_column=Column(IntEnumType(Transport), nullable=False))
    last_seen: datetime | None = Field(default=None, sa_column=Column(UTCDateTime(), index=True))
    signal_strength: int = NO_SIGNAL  # latest dBm, radio only
    network_address: str | None = None  # network only
