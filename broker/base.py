from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, Mapping, Optional

LABEL_NAMES = ("account_id", "account_type", "account_name")


@dataclass
class Credentials:
    username: str
    password: str = field(repr=False)
    otp: Optional[str] = field(default=None, repr=False)  # used for the first challenge only


@dataclass
class Account:
    id: str
    type: str
    nickname: str = ""
    total_deposits: Optional[float] = None
    total_withdrawals: Optional[float] = None
    net_liquidation: Optional[float] = None
    gross_position: Optional[float] = None
    base_currency: Optional[str] = None
    status: Optional[str] = None

    def labels(self) -> Dict[str, str]:
        return {
            "account_id": self.id,
            "account_type": self.type,
            "account_name": self.nickname,
        }


@dataclass(frozen=True)
class MetricSample:
    name: str
    labels: Mapping[str, str]
    value: float

    def __post_init__(self):
        # read-only copy; snapshots share samples with the store
        object.__setattr__(self, "labels", MappingProxyType(dict(self.labels)))

    def key(self) -> tuple:
        return self.name, tuple(self.labels.get(n, "") for n in LABEL_NAMES)
