import threading
from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from .accounting import (
    EMPTY_ACCOUNT,
    entitlement,
    pending_rewards,
    rewards_per_share_delta,
    settle,
    split_debit,
)
from .collaborators import (
    AssetTransferError,
    AssetVault,
    Authorizer,
    Clock,
    EventSink,
    InMemoryEventSink,
    InMemoryVault,
    RoleRegistry,
    SystemClock,
)
from .config import LedgerConfig
from .models import (
    AccountState,
    AccountSummary,
    Capability,
    EventType,
    LedgerEvent,
    OperationResponse,
    PoolState,
    PoolSummary,
    RewardRecord,
    WithdrawalOrder,
)


class LedgerServiceError(Exception):
    pass


class InvalidAmountError(LedgerServiceError):
    pass


class InsufficientPoolBalanceError(LedgerServiceError):
    pass


class InsufficientUserBalanceError(LedgerServiceError):
    pass


class NothingToDistributeError(LedgerServiceError):
    pass


class TooSoonError(LedgerServiceError):
    pass


class UnauthorizedError(LedgerServiceError):
    pass


class MalformedCallError(LedgerServiceError):
    pass


class TransferFailedError(LedgerServiceError):
    pass


class InMemoryStorage:
    def __init__(self):
        self.pool = PoolState()
        self.accounts: dict[str, AccountState] = {}


class PoolLedgerService:
    """Pooled staking ledger.

    Every mutation validates first, computes the new values into locals, moves
    the asset through the vault and only then commits. A failure at any step
    leaves the pool and all accounts untouched. One re-entrant lock serializes
    the whole aggregate, reads included.
    """

    def __init__(
        self,
        storage: Optional[InMemoryStorage] = None,
        vault: Optional[AssetVault] = None,
        authorizer: Optional[Authorizer] = None,
        clock: Optional[Clock] = None,
        events: Optional[EventSink] = None,
        config: Optional[LedgerConfig] = None,
    ):
        self.config = config or LedgerConfig()
        self.storage = storage or InMemoryStorage()
        self.vault = vault or InMemoryVault()
        self.authorizer = authorizer or RoleRegistry(self.config.operators)
        self.clock = clock or SystemClock()
        self.events = events or InMemoryEventSink()
        self._lock = threading.RLock()

    # Depositors

    def deposit_user_funds(self, identity: str, amount: int) -> OperationResponse:
        self._require_amount(amount)

        with self._lock:
            pool = self.storage.pool
            now = self.clock.now()

            account = settle(self._get_account(identity), pool.rewards_per_share)
            account = account.model_copy(update={"deposit": account.deposit + amount})
            new_total = pool.total_deposited + amount

            self._transfer_in(identity, amount)

            self._put_account(identity, account)
            pool.total_deposited = new_total

            event = self._emit(EventType.DEPOSIT_RECORDED, identity, amount, now)
            return OperationResponse(
                event=event,
                account=self._summarize(identity),
                message="Deposit recorded",
            )

    def withdraw_user_funds(self, identity: str, amount: Optional[int] = None) -> OperationResponse:
        """Withdraw ``amount`` of the caller's entitlement, or all of it when ``amount`` is None."""
        if amount is not None:
            self._require_amount(amount)

        with self._lock:
            pool = self.storage.pool
            now = self.clock.now()

            account = settle(self._get_account(identity), pool.rewards_per_share)
            available = account.deposit + account.banked_rewards
            if amount is None:
                if available == 0:
                    raise InvalidAmountError(f"Account {identity} has nothing to withdraw")
                amount = available

            if amount > available:
                raise InsufficientUserBalanceError(
                    f"Requested {amount} but account {identity} is entitled to {available}"
                )
            if self.vault.balance() < amount:
                raise InsufficientPoolBalanceError("Insufficient funds in pool balance")

            deposit_first = self.config.withdrawal_order == WithdrawalOrder.DEPOSIT_FIRST
            from_deposit, from_rewards = split_debit(account, amount, deposit_first)
            account = account.model_copy(update={
                "deposit": account.deposit - from_deposit,
                "banked_rewards": account.banked_rewards - from_rewards,
            })
            new_total = pool.total_deposited - from_deposit
            new_unclaimed = max(0, pool.unclaimed_rewards - from_rewards)

            self._transfer_out(identity, amount)

            self._put_account(identity, account)
            pool.total_deposited = new_total
            # Whatever liability is left once the last account closes is rounding dust.
            pool.unclaimed_rewards = new_unclaimed if self.storage.accounts else 0

            event = self._emit(
                EventType.WITHDRAWAL_RECORDED, identity, amount, now,
                from_deposit=from_deposit,
                from_rewards=from_rewards,
            )
            return OperationResponse(
                event=event,
                account=self._summarize(identity),
                message="Withdrawal recorded",
            )

    def transfer_shares(self, sender: str, recipient: str, amount: int) -> OperationResponse:
        self._require_amount(amount)
        if sender == recipient:
            raise InvalidAmountError("Cannot transfer shares to the same account")

        with self._lock:
            pool = self.storage.pool
            now = self.clock.now()

            source = settle(self._get_account(sender), pool.rewards_per_share)
            target = settle(self._get_account(recipient), pool.rewards_per_share)
            if amount > source.deposit:
                raise InsufficientUserBalanceError(
                    f"Account {sender} holds {source.deposit} shares, cannot transfer {amount}"
                )

            self._put_account(sender, source.model_copy(update={"deposit": source.deposit - amount}))
            self._put_account(recipient, target.model_copy(update={"deposit": target.deposit + amount}))

            event = self._emit(EventType.SHARES_TRANSFERRED, sender, amount, now, recipient=recipient)
            return OperationResponse(
                event=event,
                account=self._summarize(sender),
                message="Shares transferred",
            )

    # Operator

    def inject_reward(self, caller: str, amount: int) -> OperationResponse:
        self._require_capability(caller, Capability.REWARD_AUTHORITY)
        self._require_amount(amount)

        with self._lock:
            pool = self.storage.pool
            now = self.clock.now()

            if pool.total_deposited == 0:
                raise NothingToDistributeError("Nothing to reward")
            if pool.next_reward_time is not None and now < pool.next_reward_time:
                raise TooSoonError(
                    f"Next reward accepted at {pool.next_reward_time}, {pool.next_reward_time - now}s from now"
                )

            delta = rewards_per_share_delta(amount, pool.total_deposited)
            if delta == 0:
                raise InvalidAmountError(
                    f"Reward {amount} is too small to distribute over {pool.total_deposited}"
                )

            record = RewardRecord(
                index=len(pool.reward_history),
                injected_by=caller,
                amount=amount,
                total_deposited=pool.total_deposited,
                rewards_per_share_delta=delta,
                timestamp=now,
            )

            self._transfer_in(caller, amount)

            pool.rewards_per_share += delta
            pool.unclaimed_rewards += amount
            pool.next_reward_time = now + self.config.reward_interval
            pool.reward_history.append(record)

            event = self._emit(
                EventType.REWARD_INJECTED, caller, amount, now,
                reward_index=record.index,
                rewards_per_share=pool.rewards_per_share,
                next_reward_time=pool.next_reward_time,
            )
            return OperationResponse(event=event, message="Reward injected")

    def receive_operator_funds(self, caller: str, amount: int, data: Optional[str] = None) -> OperationResponse:
        """Plain value transfer into the pool, credited to the operator's free balance."""
        if data:
            raise MalformedCallError("Wrong call to contract")
        self._require_capability(caller, Capability.OPERATOR)
        self._require_amount(amount)

        with self._lock:
            now = self.clock.now()
            self._transfer_in(caller, amount)
            event = self._emit(EventType.OPERATOR_FUNDED, caller, amount, now)
            return OperationResponse(event=event, message="Operator funds received")

    def withdraw_operator_funds(self, caller: str, amount: int) -> OperationResponse:
        self._require_capability(caller, Capability.OPERATOR)
        self._require_amount(amount)

        with self._lock:
            now = self.clock.now()
            free = self.get_team_balance()
            if amount > free:
                raise InsufficientPoolBalanceError(
                    f"Operator balance is {free}, cannot withdraw {amount}"
                )

            self._transfer_out(caller, amount)

            event = self._emit(EventType.OPERATOR_WITHDRAWN, caller, amount, now)
            return OperationResponse(event=event, message="Operator funds withdrawn")

    # Read-only projections

    def get_entitlement(self, identity: str) -> int:
        with self._lock:
            return entitlement(self._get_account(identity), self.storage.pool.rewards_per_share)

    def get_user_rewards(self, identity: str) -> int:
        with self._lock:
            account = self._get_account(identity)
            return account.banked_rewards + pending_rewards(account, self.storage.pool.rewards_per_share)

    def get_account(self, identity: str) -> AccountSummary:
        with self._lock:
            return self._summarize(identity)

    def get_team_balance(self) -> int:
        with self._lock:
            pool = self.storage.pool
            return max(0, self.vault.balance() - pool.total_deposited - pool.unclaimed_rewards)

    def get_pool_state(self) -> PoolSummary:
        with self._lock:
            pool = self.storage.pool
            return PoolSummary(
                share_name=self.config.share_name,
                share_symbol=self.config.share_symbol,
                total_deposited=pool.total_deposited,
                rewards_per_share=pool.rewards_per_share,
                next_reward_time=pool.next_reward_time,
                unclaimed_rewards=pool.unclaimed_rewards,
                vault_balance=self.vault.balance(),
                team_balance=self.get_team_balance(),
                reward_count=len(pool.reward_history),
            )

    def get_reward_history(self, limit: int = 50, offset: int = 0) -> list[RewardRecord]:
        with self._lock:
            return list(self.storage.pool.reward_history[offset:offset + limit])

    def get_events(self, identity: Optional[str] = None, limit: int = 50, offset: int = 0) -> list[LedgerEvent]:
        with self._lock:
            events = self.events.history(identity)
        events.reverse()
        return events[offset:offset + limit]

    # Internals

    def _require_amount(self, amount: int) -> None:
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise InvalidAmountError(f"Amount must be a positive integer, got {amount!r}")

    def _require_capability(self, identity: str, capability: Capability) -> None:
        if not self.authorizer.has_capability(identity, capability):
            raise UnauthorizedError(f"Account {identity} is missing capability {capability.value}")

    def _get_account(self, identity: str) -> AccountState:
        return self.storage.accounts.get(identity, EMPTY_ACCOUNT)

    def _put_account(self, identity: str, account: AccountState) -> None:
        if account.is_empty():
            self.storage.accounts.pop(identity, None)
        else:
            self.storage.accounts[identity] = account

    def _transfer_in(self, source: str, amount: int) -> None:
        try:
            self.vault.receive(source, amount)
        except AssetTransferError as e:
            raise TransferFailedError(f"Inbound transfer from {source} failed: {e}") from e

    def _transfer_out(self, destination: str, amount: int) -> None:
        try:
            self.vault.send(destination, amount)
        except AssetTransferError as e:
            raise TransferFailedError(f"Outbound transfer to {destination} failed: {e}") from e

    def _summarize(self, identity: str) -> AccountSummary:
        account = self._get_account(identity)
        pending = pending_rewards(account, self.storage.pool.rewards_per_share)
        return AccountSummary(
            identity=identity,
            deposit=account.deposit,
            banked_rewards=account.banked_rewards,
            pending_rewards=pending,
            rewards=account.banked_rewards + pending,
            entitlement=account.deposit + account.banked_rewards + pending,
            rewards_per_share_checkpoint=account.rewards_per_share_checkpoint,
        )

    def _emit(self, event_type: EventType, identity: str, amount: int, timestamp: int, **metadata) -> LedgerEvent:
        event = LedgerEvent(
            id=uuid4(),
            event_type=event_type,
            identity=identity,
            amount=amount,
            total_deposited=self.storage.pool.total_deposited,
            timestamp=timestamp,
            recorded_at=datetime.now(timezone.utc),
            metadata=metadata,
        )
        self.events.emit(event)
        return event
