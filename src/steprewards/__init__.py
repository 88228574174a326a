"""Step Rewards backend: earnings ledger, cashouts, tournaments and referrals."""
