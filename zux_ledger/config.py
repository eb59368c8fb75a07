"""
Simulation settings, loadable from and savable to JSON.
"""
import json
import os
from typing import Optional
from dataclasses import asdict, dataclass, field, fields


@dataclass
class ChainConfig:
    """Network identity and proof-of-work parameters."""
    network_name: str = "ZUX-Testnet"
    version: str = "1.0.0.0.0"
    inception_year: int = 2025
    difficulty: int = 2
    genesis_difficulty: int = 1
    mining_workers: int = 0  # 0 mines on the driver thread


@dataclass
class PoolConfig:
    """AMM pool configuration."""
    initial_reserve_a: float = 100_000.0  # ZUX
    initial_reserve_b: float = 1_000.0    # USDZ, initial price 0.01
    fee_rate: float = 0.003
    history_limit: int = 1000
    window_seconds: float = 5.0


@dataclass
class FundingConfig:
    """Genesis funding from the system wallet."""
    account_count: int = 1000
    base_per_account: float = 100.0
    quote_per_account: float = 500.0
    system_base_supply: float = 1_000_000_000.0
    system_quote_supply: float = 5_000_000_000.0


@dataclass
class AgentConfig:
    """Trading agent configuration."""
    whale_probability: float = 0.10
    mega_whale_probability: float = 0.01
    manipulation_probability: float = 0.30
    threshold_low: float = 0.005
    threshold_high: float = 0.03
    agents_per_tick: int = 1
    noise_trade_probability: float = 0.5
    noise_fraction_low: float = 0.1
    noise_fraction_high: float = 0.3
    min_trade_amount: float = 0.000001


@dataclass
class RunConfig:
    """Driver loop configuration."""
    ticks: int = 10000
    tick_interval: float = 0.0  # seconds between ticks
    seed: Optional[int] = None
    status_interval: int = 100  # ticks between status log lines


@dataclass
class MonitoringConfig:
    """Prometheus exporter settings."""
    enabled: bool = False
    host: str = "127.0.0.1"
    port: int = 9090


@dataclass
class SimulationConfig:
    """All simulation settings, one dataclass per section."""
    chain: ChainConfig = field(default_factory=ChainConfig)
    pool: PoolConfig = field(default_factory=PoolConfig)
    funding: FundingConfig = field(default_factory=FundingConfig)
    agents: AgentConfig = field(default_factory=AgentConfig)
    run: RunConfig = field(default_factory=RunConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)

    @classmethod
    def default(cls) -> 'SimulationConfig':
        return cls()

    @classmethod
    def from_dict(cls, data: dict) -> 'SimulationConfig':
        """Builds a config from nested section dicts; missing keys keep defaults."""
        sections = {}
        for section in fields(cls):
            values = data.get(section.name) or {}
            sections[section.name] = section.default_factory(**values)
        return cls(**sections)

    @classmethod
    def from_file(cls, path: str) -> 'SimulationConfig':
        with open(path) as fp:
            return cls.from_dict(json.load(fp))

    def to_file(self, path: str):
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(path, 'w') as fp:
            json.dump(self.to_dict(), fp, indent=2, sort_keys=True)

    def to_dict(self) -> dict:
        return asdict(self)
