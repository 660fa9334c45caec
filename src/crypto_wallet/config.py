"""Configuration system for the crypto wallet client.

Loads config from `.crypto-wallet/config.yaml`, supports environment
variable expansion, and resolves chain presets and tracked tokens.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field

from crypto_wallet.chain.chains import Chain, get_chain


# ---------------------------------------------------------------------------
# Environment-variable expansion helper
# ---------------------------------------------------------------------------

_ENV_VAR_RE = re.compile(r"\$\{([^}]+)\}")


def _expand_env_vars(value: str) -> str:
    """Replace ``${VAR_NAME}`` placeholders with their environment values.

    If the variable is not set the placeholder is left as-is so that
    validation can catch it later.
    """

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        return os.environ.get(var_name, match.group(0))

    return _ENV_VAR_RE.sub(_replace, value)


def _expand_env_recursive(obj: object) -> object:
    """Walk an arbitrary nested structure and expand env vars in strings."""
    if isinstance(obj, str):
        return _expand_env_vars(obj)
    if isinstance(obj, dict):
        return {k: _expand_env_recursive(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_expand_env_recursive(item) for item in obj]
    return obj


# ---------------------------------------------------------------------------
# Pydantic v2 models
# ---------------------------------------------------------------------------


class TokenConfig(BaseModel):
    """An ERC-20 token whose balance is tracked and which can be sent."""

    symbol: str
    contract_address: str
    decimals: Optional[int] = None  # fetched from the contract when unset


class ChainConfig(BaseModel):
    """Which network to talk to."""

    name: str = "bsc-testnet"
    rpc_url: Optional[str] = None  # overrides the preset's RPC endpoint
    request_timeout_seconds: float = 30.0

    def resolve(self) -> Chain:
        return get_chain(self.name)


class BackendConfig(BaseModel):
    """Backend ledger service endpoint."""

    api_url: str = "http://localhost:5001"
    timeout_seconds: float = 15.0


class FeeConfig(BaseModel):
    """Fee estimation behaviour."""

    debounce_seconds: float = 0.5


class SettlementConfig(BaseModel):
    """How broadcast transfers are followed until they settle."""

    poll_interval_seconds: float = 3.0
    timeout_seconds: float = 600.0       # unmined after this -> dropped
    replacement_fee_bump_percent: float = 12.5


def _default_tokens() -> list[TokenConfig]:
    return [
        TokenConfig(symbol="USDT", contract_address="0x787A697324dbA4AB965C58CD33c13ff5eeA6295F"),
        TokenConfig(symbol="USDC", contract_address="0x342e3aA1248AB77E319e3331C6fD3f1F2d4B36B1"),
    ]


class WalletClientConfig(BaseModel):
    """Root configuration object."""

    chain: ChainConfig = Field(default_factory=ChainConfig)
    tokens: list[TokenConfig] = Field(default_factory=_default_tokens)
    backend: BackendConfig = Field(default_factory=BackendConfig)
    fees: FeeConfig = Field(default_factory=FeeConfig)
    settlement: SettlementConfig = Field(default_factory=SettlementConfig)

    def get_token(self, symbol: str) -> TokenConfig | None:
        wanted = symbol.upper()
        for token in self.tokens:
            if token.symbol.upper() == wanted:
                return token
        return None


# ---------------------------------------------------------------------------
# Public helpers
# ---------------------------------------------------------------------------


def get_data_dir(base: Path | None = None, *, create: bool = True) -> Path:
    """Return the ``.crypto-wallet/`` directory.

    Parameters
    ----------
    base:
        Parent directory that contains (or will contain) the data folder.
        Defaults to the current working directory.
    create:
        If *True* (default), create the directory if it doesn't exist.
    """
    if base is None:
        base = Path.cwd()
    data_dir = base / ".crypto-wallet"
    if create:
        data_dir.mkdir(parents=True, exist_ok=True)
    return data_dir


def load_config(path: Path) -> WalletClientConfig:
    """Load and validate configuration from a YAML file.

    Environment variable placeholders (``${VAR}``) are expanded before
    validation. A missing file yields the defaults.
    """
    if not path.exists():
        return WalletClientConfig()
    raw_text = path.read_text(encoding="utf-8")
    raw_data = yaml.safe_load(raw_text) or {}
    expanded = _expand_env_recursive(raw_data)
    return WalletClientConfig.model_validate(expanded)


def save_config(config: WalletClientConfig, path: Path) -> None:
    """Serialize a :class:`WalletClientConfig` to a YAML file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    data = config.model_dump(mode="python", exclude_none=True)
    with open(path, "w", encoding="utf-8") as fh:
        yaml.dump(data, fh, default_flow_style=False, sort_keys=False)
