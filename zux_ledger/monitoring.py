"""
Prometheus metrics for a running simulation.

Each Monitor owns its registry, so several simulations (or tests) in one
process never collide on metric names.
"""
import logging
import time

import psutil
from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, start_http_server

logger = logging.getLogger(__name__)

MINING_BUCKETS = (0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 30.0)


class Monitor:
    def __init__(self, host="127.0.0.1", port=9090):
        self.host = host
        self.port = port
        self.registry = CollectorRegistry()
        self._http = None

        # Block rate bookkeeping
        self._rate_since = time.time()
        self._rate_height = 0

        self.tx_counter = Counter(
            'ledger_transactions', 'Transfers and swap legs by outcome',
            ['status'], registry=self.registry)
        self.swap_counter = Counter(
            'amm_swaps', 'Swaps executed against the pool',
            ['direction'], registry=self.registry)
        self.mining_latency = Histogram(
            'ledger_block_mining_seconds', 'Time spent searching for a nonce',
            buckets=MINING_BUCKETS, registry=self.registry)

        self.chain_height = Gauge('ledger_chain_height', 'Blocks on the chain', registry=self.registry)
        self.total_transactions = Gauge(
            'ledger_chain_transactions', 'Transactions recorded in blocks', registry=self.registry)
        self.blocks_per_second = Gauge(
            'ledger_blocks_per_second', 'Append rate since the previous update', registry=self.registry)

        self.pool_price = Gauge('amm_price', 'USDZ per ZUX', registry=self.registry)
        self.pool_reserve = Gauge('amm_reserve', 'Pool reserves', ['currency'], registry=self.registry)
        self.pool_k = Gauge('amm_invariant_k', 'Constant product k', registry=self.registry)
        self.pool_utilization = Gauge(
            'amm_utilization_percent', 'Window volume over total liquidity', registry=self.registry)

        self.process_cpu = Gauge('process_cpu_usage_percent', 'Host CPU usage', registry=self.registry)
        self.process_memory = Gauge('process_memory_usage_percent', 'Host memory usage', registry=self.registry)

    def start_server(self):
        """Expose the registry over HTTP on a daemon thread."""
        server, _ = start_http_server(self.port, addr=self.host, registry=self.registry)
        self._http = server
        logger.info(f"Metrics available at http://{self.host}:{self.port}/metrics")

    def stop_server(self):
        if self._http is None:
            return
        self._http.shutdown()
        self._http.server_close()
        self._http = None
        logger.info("Metrics server stopped")

    def record_tx(self, status: str):
        self.tx_counter.labels(status=status).inc()

    def record_swap(self, direction: str):
        self.swap_counter.labels(direction=direction).inc()

    def record_block(self, latency: float):
        self.mining_latency.observe(latency)

    def update_chain(self, blockchain):
        height = blockchain.height
        self.chain_height.set(height)
        self.total_transactions.set(blockchain.total_transactions)

        now = time.time()
        if now > self._rate_since:
            self.blocks_per_second.set((height - self._rate_height) / (now - self._rate_since))
        self._rate_since, self._rate_height = now, height

    def update_pool(self, pool):
        state = pool.snapshot()
        self.pool_price.set(state['price'])
        self.pool_reserve.labels(currency='ZUX').set(state['reserve_a'])
        self.pool_reserve.labels(currency='USDZ').set(state['reserve_b'])
        self.pool_k.set(state['k'])
        self.pool_utilization.set(state['utilization'])

    def update_system(self):
        self.process_cpu.set(psutil.cpu_percent())
        self.process_memory.set(psutil.virtual_memory().percent)
