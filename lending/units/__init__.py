"""
Units module - Ledger units that carry lending state.

- Position units: one per borrower position, state-only
- Vault share units: the vault's shares, with the vault totals as unit state

Pure transitions and adapters for both are re-exported here for convenience.
"""

# Positions
from .position import (
    Position,
    POSITION_STATUS_ACTIVE,
    POSITION_STATUS_CLOSED,
    POSITION_STATUS_LIQUIDATED,
    position_symbol,
    custody_wallet_id,
    is_custody_wallet,
    new_position,
    create_position_unit,
    load_position,
    get_holdings,
    to_state_dict as position_state_dict,
)

# Vault shares
from .vault import (
    VaultState,
    Redemption,
    load_vault_state,
    calculate_share_supply,
    calculate_redemption,
    calculate_withdraw_shares,
    preview_deposit,
    preview_mint,
    share_price,
    to_state_dict as vault_state_dict,
)

__all__ = [
    'Position', 'POSITION_STATUS_ACTIVE', 'POSITION_STATUS_CLOSED', 'POSITION_STATUS_LIQUIDATED',
    'position_symbol', 'custody_wallet_id', 'is_custody_wallet', 'new_position',
    'create_position_unit', 'load_position', 'get_holdings', 'position_state_dict',
    'VaultState', 'Redemption', 'load_vault_state', 'calculate_share_supply',
    'calculate_redemption', 'calculate_withdraw_shares', 'preview_deposit', 'preview_mint',
    'share_price', 'vault_state_dict',
]
