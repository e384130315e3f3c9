from datetime import datetime
from enum import Enum
from typing import Literal, Optional, Union
from uuid import UUID
from pydantic import BaseModel, Field, ConfigDict, StrictInt


class Capability(str, Enum):
    REWARD_AUTHORITY = "REWARD_AUTHORITY"
    OPERATOR = "OPERATOR"


class WithdrawalOrder(str, Enum):
    DEPOSIT_FIRST = "deposit_first"
    REWARDS_FIRST = "rewards_first"


class EventType(str, Enum):
    DEPOSIT_RECORDED = "DEPOSIT_RECORDED"
    WITHDRAWAL_RECORDED = "WITHDRAWAL_RECORDED"
    SHARES_TRANSFERRED = "SHARES_TRANSFERRED"
    REWARD_INJECTED = "REWARD_INJECTED"
    OPERATOR_FUNDED = "OPERATOR_FUNDED"
    OPERATOR_WITHDRAWN = "OPERATOR_WITHDRAWN"


class AccountState(BaseModel):
    deposit: int = 0
    rewards_per_share_checkpoint: int = 0
    banked_rewards: int = 0

    model_config = ConfigDict(frozen=True)

    def is_empty(self) -> bool:
        return self.deposit == 0 and self.banked_rewards == 0


class RewardRecord(BaseModel):
    index: int
    injected_by: str
    amount: int
    total_deposited: int
    rewards_per_share_delta: int
    timestamp: int

    model_config = ConfigDict(frozen=True)


class PoolState(BaseModel):
    total_deposited: int = 0
    rewards_per_share: int = 0
    next_reward_time: Optional[int] = None
    unclaimed_rewards: int = 0
    reward_history: list[RewardRecord] = Field(default_factory=list)


class LedgerEvent(BaseModel):
    id: UUID
    event_type: EventType
    identity: str
    amount: int
    total_deposited: int
    timestamp: int
    recorded_at: datetime
    metadata: dict = Field(default_factory=dict)

    model_config = ConfigDict(from_attributes=True)


class DepositRequest(BaseModel):
    amount: StrictInt = Field(..., description="Amount of the base asset to deposit")

    model_config = ConfigDict(json_schema_extra={
        "example": {"amount": 1000000}
    })


class WithdrawRequest(BaseModel):
    amount: Union[StrictInt, Literal["all"]] = Field(
        default="all", description="Amount to withdraw, or 'all' for the whole entitlement"
    )


class TransferRequest(BaseModel):
    recipient: str
    amount: StrictInt


class RewardRequest(BaseModel):
    amount: StrictInt = Field(..., description="Reward amount distributed over current depositors")


class OperatorFundsRequest(BaseModel):
    amount: StrictInt
    data: Optional[str] = Field(default=None, description="Must be empty for a plain value transfer")


class OperatorWithdrawRequest(BaseModel):
    amount: StrictInt


class AccountSummary(BaseModel):
    identity: str
    deposit: int
    banked_rewards: int
    pending_rewards: int
    rewards: int
    entitlement: int
    rewards_per_share_checkpoint: int


class PoolSummary(BaseModel):
    share_name: str
    share_symbol: str
    total_deposited: int
    rewards_per_share: int
    next_reward_time: Optional[int] = None
    unclaimed_rewards: int
    vault_balance: int
    team_balance: int
    reward_count: int


class TeamBalance(BaseModel):
    team_balance: int
    vault_balance: int


class OperationResponse(BaseModel):
    event: LedgerEvent
    account: Optional[AccountSummary] = None
    message: str
