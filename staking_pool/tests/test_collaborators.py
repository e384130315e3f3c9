import json
import logging

import pytest

from staking_pool.collaborators import (
    AssetTransferError,
    InMemoryVault,
    ManualClock,
    RoleRegistry,
    SystemClock,
)
from staking_pool.models import Capability, EventType
from staking_pool.service import PoolLedgerService, TransferFailedError


OPERATOR = "0xteam"
ALICE = "0xalice"


class RefusingVault(InMemoryVault):
    """Vault whose outbound transfers always bounce."""

    def send(self, destination, amount):
        raise AssetTransferError(f"{destination} rejected the transfer")


class InboundGatedVault(InMemoryVault):
    """Vault that bounces inbound transfers while ``accepting`` is False."""

    def __init__(self):
        super().__init__()
        self.accepting = True

    def receive(self, source, amount):
        if not self.accepting:
            raise AssetTransferError(f"Inbound transfer from {source} bounced")
        super().receive(source, amount)


def pool_snapshot(service):
    pool = service.storage.pool
    return (
        pool.total_deposited,
        pool.rewards_per_share,
        pool.next_reward_time,
        pool.unclaimed_rewards,
        list(pool.reward_history),
        dict(service.storage.accounts),
        service.vault.balance(),
        len(service.get_events(limit=1000)),
    )


class TestRoleRegistry:

    def test_operators_get_both_capabilities(self):
        roles = RoleRegistry([OPERATOR])

        assert roles.has_capability(OPERATOR, Capability.OPERATOR)
        assert roles.has_capability(OPERATOR, Capability.REWARD_AUTHORITY)
        assert not roles.has_capability(ALICE, Capability.OPERATOR)

    def test_grant_and_revoke(self):
        roles = RoleRegistry()
        roles.grant(ALICE, Capability.REWARD_AUTHORITY)
        assert roles.has_capability(ALICE, Capability.REWARD_AUTHORITY)

        roles.revoke(ALICE, Capability.REWARD_AUTHORITY)
        assert not roles.has_capability(ALICE, Capability.REWARD_AUTHORITY)


class TestClocks:

    def test_manual_clock_only_moves_forward(self):
        clock = ManualClock(start=100)
        assert clock.advance(5) == 105

        with pytest.raises(ValueError):
            clock.advance(-1)

    def test_system_clock_is_non_decreasing(self):
        clock = SystemClock()
        first = clock.now()
        assert clock.now() >= first


class TestVaultFailures:

    def test_in_memory_vault_refuses_overdraft(self):
        vault = InMemoryVault(initial_balance=10)

        with pytest.raises(AssetTransferError):
            vault.send(ALICE, 11)
        assert vault.balance() == 10

    def test_failed_payout_rolls_back_withdrawal(self):
        """Test that a bounced transfer leaves the account and pool untouched."""
        service = PoolLedgerService(
            vault=RefusingVault(),
            clock=ManualClock(),
            authorizer=RoleRegistry([OPERATOR]),
        )
        service.deposit_user_funds(ALICE, 1000)
        service.inject_reward(OPERATOR, 100)

        with pytest.raises(TransferFailedError):
            service.withdraw_user_funds(ALICE)

        account = service.storage.accounts[ALICE]
        assert account.deposit == 1000
        assert account.banked_rewards == 0
        assert service.storage.pool.total_deposited == 1000
        assert service.storage.pool.unclaimed_rewards == 100
        assert service.get_entitlement(ALICE) == 1100
        assert [e.event_type for e in service.get_events()] == [
            EventType.REWARD_INJECTED,
            EventType.DEPOSIT_RECORDED,
        ]

    def test_failed_deposit_transfer_changes_nothing(self):
        """Test that a bounced inbound deposit records no stake and no event."""
        vault = InboundGatedVault()
        service = PoolLedgerService(vault=vault, clock=ManualClock(), authorizer=RoleRegistry([OPERATOR]))
        service.deposit_user_funds(ALICE, 1000)
        before = pool_snapshot(service)

        vault.accepting = False
        with pytest.raises(TransferFailedError):
            service.deposit_user_funds(ALICE, 500)
        with pytest.raises(TransferFailedError):
            service.deposit_user_funds("0xbob", 500)

        assert pool_snapshot(service) == before
        assert "0xbob" not in service.storage.accounts

    def test_failed_reward_transfer_changes_nothing(self):
        """Test that a bounced reward leaves the accumulator, gate and history untouched."""
        vault = InboundGatedVault()
        service = PoolLedgerService(vault=vault, clock=ManualClock(), authorizer=RoleRegistry([OPERATOR]))
        service.deposit_user_funds(ALICE, 1000)
        before = pool_snapshot(service)

        vault.accepting = False
        with pytest.raises(TransferFailedError):
            service.inject_reward(OPERATOR, 100)

        assert pool_snapshot(service) == before
        assert service.storage.pool.next_reward_time is None
        assert service.storage.pool.reward_history == []

        # The gate was not consumed, so a retry succeeds straight away
        vault.accepting = True
        service.inject_reward(OPERATOR, 100)
        assert service.get_entitlement(ALICE) == 1100

    def test_failed_operator_payout_changes_nothing(self):
        """Test that a bounced operator sweep keeps the team balance."""
        service = PoolLedgerService(
            vault=RefusingVault(),
            clock=ManualClock(),
            authorizer=RoleRegistry([OPERATOR]),
        )
        service.receive_operator_funds(OPERATOR, 5000)
        before = pool_snapshot(service)

        with pytest.raises(TransferFailedError):
            service.withdraw_operator_funds(OPERATOR, 5000)

        assert pool_snapshot(service) == before
        assert service.get_team_balance() == 5000


class TestEventSink:

    def test_events_are_logged_as_json(self, caplog):
        service = PoolLedgerService(clock=ManualClock(), authorizer=RoleRegistry([OPERATOR]))

        with caplog.at_level(logging.INFO, logger="staking_pool.collaborators"):
            service.deposit_user_funds(ALICE, 250)

        payloads = [json.loads(r.getMessage()) for r in caplog.records if r.name == "staking_pool.collaborators"]
        assert len(payloads) == 1
        assert payloads[0]["event"] == "deposit_recorded"
        assert payloads[0]["identity"] == ALICE
        assert payloads[0]["amount"] == 250
        assert payloads[0]["total_deposited"] == 250
