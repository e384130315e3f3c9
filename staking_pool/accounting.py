"""
Reward-per-share accounting.

Rewards are never pushed to depositors. An injection bumps a single scaled
accumulator; every account remembers the accumulator value it last saw and
pulls the difference the next time it is touched:

    earned = deposit * (rewards_per_share - checkpoint) // SCALE

Integer division truncates, so each settlement may leave up to one base unit
per account behind. That dust stays in the pool's unclaimed liability and is
released to the operator once no account holds an entitlement.
"""

from .models import AccountState

SCALE = 10 ** 18

EMPTY_ACCOUNT = AccountState()


def rewards_per_share_delta(amount: int, total_deposited: int) -> int:
    return amount * SCALE // total_deposited


def pending_rewards(account: AccountState, rewards_per_share: int) -> int:
    return account.deposit * (rewards_per_share - account.rewards_per_share_checkpoint) // SCALE


def settle(account: AccountState, rewards_per_share: int) -> AccountState:
    """Credit everything earned since the last checkpoint and move the checkpoint forward.

    Must run before ``deposit`` changes so the old share size is paid at the
    old rate. Calling it again with the same accumulator adds nothing.
    """
    earned = pending_rewards(account, rewards_per_share)
    return account.model_copy(update={
        "banked_rewards": account.banked_rewards + earned,
        "rewards_per_share_checkpoint": rewards_per_share,
    })


def entitlement(account: AccountState, rewards_per_share: int) -> int:
    return account.deposit + account.banked_rewards + pending_rewards(account, rewards_per_share)


def split_debit(account: AccountState, amount: int, deposit_first: bool) -> tuple[int, int]:
    """Return ``(from_deposit, from_rewards)`` for a settled account."""
    if deposit_first:
        from_deposit = min(amount, account.deposit)
        return from_deposit, amount - from_deposit
    from_rewards = min(amount, account.banked_rewards)
    return amount - from_rewards, from_rewards
