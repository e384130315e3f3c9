import os
from typing import Optional

from pydantic import BaseModel, Field

from .models import WithdrawalOrder

ONE_WEEK = 7 * 24 * 60 * 60


class LedgerConfig(BaseModel):
    reward_interval: int = Field(default=ONE_WEEK, ge=0, description="Seconds between reward injections")
    withdrawal_order: WithdrawalOrder = WithdrawalOrder.DEPOSIT_FIRST
    operators: list[str] = Field(default_factory=list)
    share_name: str = "Pooled ETH"
    share_symbol: str = "pETH"
    log_level: str = "INFO"


def _split_csv(raw: Optional[str]) -> list[str]:
    if not raw:
        return []
    return [part.strip() for part in raw.split(",") if part.strip()]


def load_config() -> LedgerConfig:
    return LedgerConfig(
        reward_interval=int(os.getenv("STAKING_POOL_REWARD_INTERVAL", str(ONE_WEEK))),
        withdrawal_order=os.getenv("STAKING_POOL_WITHDRAWAL_ORDER", WithdrawalOrder.DEPOSIT_FIRST.value).strip().lower(),
        operators=_split_csv(os.getenv("STAKING_POOL_OPERATORS")),
        share_name=os.getenv("STAKING_POOL_SHARE_NAME", "Pooled ETH"),
        share_symbol=os.getenv("STAKING_POOL_SHARE_SYMBOL", "pETH"),
        log_level=os.getenv("STAKING_POOL_LOG_LEVEL", "INFO"),
    )
