"""Points balances and referral rewards."""
