# main.py
import asyncio
import signal
import sys
import questionary
from rich.live import Live
from rich.console import Console

# Import Engines
from sniper.config import load_config, ConfigError
from sniper.logger import setup_console_logger, AsyncAuditLogger
from sniper.ledger import LedgerClient
from sniper.execution import ExecutionGateway
from sniper.state import ProcessState
from sniper.stats import StatsRecorder, CSV_HEADER
from sniper.sequencer import TradeSequencer
from sniper.admission import AdmissionGate
from sniper.websocket_engine import WebSocketEngine
from sniper.dashboard import generate_dashboard

# --- UI HELPER FUNCTIONS ---

def startup_selection(config):
    """Interactive CLI to pick the venue and arm (or not) live trading."""
    print("\n🎯 LAUNCH SNIPER \n")
    execution = config['execution']
    pool = questionary.select("Select execution venue:", choices=execution['venues'],
                              default=execution['pool']).ask()
    if not pool:
        print("No venue selected. Exiting.")
        sys.exit()

    amount = config['acquire']['amount_sol']
    live = questionary.confirm(f"Arm LIVE trading ({amount} SOL per launch)?", default=False).ask()
    if live is None:
        print("Aborted. Exiting.")
        sys.exit()
    return pool, not live

# --- MAIN CONTROLLER ---

class SniperBot:
    def __init__(self, config: dict, pool: str, dry_run: bool):
        config['execution']['pool'] = pool
        config['system']['dry_run'] = dry_run
        self.config = config
        self.dry_run = dry_run

        system = config['system']
        self.logger = setup_console_logger("Sniper", system['log_level'], system['log_dir'], console_level="ERROR")
        self.audit_log = AsyncAuditLogger(config['stats']['trade_log'], header=CSV_HEADER)

        self.state = ProcessState()
        self.ledger = LedgerClient(config, self.logger)
        self.gateway = ExecutionGateway(config, self.ledger, self.logger)
        self.stats = StatsRecorder(self.audit_log, self.logger, config['stats']['snapshot_interval_s'])
        self.sequencer = TradeSequencer(config, self.state, self.gateway, self.ledger, self.logger, self.stats)
        self.gate = AdmissionGate(config, self.state, self.sequencer, self.logger)
        self.ws_engine = WebSocketEngine(config, self.gate.submit, self.logger)
        self._stop = None

    def _log_settings(self):
        c = self.config
        self.logger.info("Starting launch sniper")
        self.logger.info(f"   - Wallet: {self.gateway.public_key}")
        self.logger.info(f"   - Mode: {'DRY RUN' if self.dry_run else 'LIVE'} | Pool: {c['execution']['pool']}")
        self.logger.info(f"   - Acquire: {c['acquire']['amount_sol']} SOL | Slippage {c['acquire']['slippage']}%")
        self.logger.info(f"   - Partial dispose: {c['partial_dispose']['fraction_pct']}% "
                         f"@ {c['partial_dispose']['delay_ms']}ms")
        self.logger.info(f"   - Full dispose: @ {c['full_dispose']['delay_ms']}ms, "
                         f"{c['full_dispose']['confirm_attempts']} confirm polls")
        self.logger.info(f"   - Staleness threshold: {c['admission']['staleness_threshold_ms']}ms")

    def _install_signal_handlers(self):
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self._stop.set)
            except NotImplementedError:
                # Windows: fall back to KeyboardInterrupt
                pass

    async def run(self):
        self._stop = asyncio.Event()
        stats_task = None
        try:
            print("Initializing Diagnostic Checks...")
            self._log_settings()
            await self.audit_log.start()
            is_healthy = await self.ledger.initialize()
            if not is_healthy:
                print("❌ Diagnostic Failed. Check RPC_URL.")
                return

            await self.ws_engine.start()
            stats_task = asyncio.create_task(self.stats.run_loop())
            self._install_signal_handlers()

            console = Console()
            with Live(console=console, refresh_per_second=4) as live:
                while not self._stop.is_set():
                    live.update(generate_dashboard(self.ws_engine, self.gate, self.stats, self.dry_run))
                    try:
                        await asyncio.wait_for(self._stop.wait(), timeout=0.25)
                    except asyncio.TimeoutError:
                        pass
        finally:
            print("Shutting down resources...")
            self.gate.stop()
            await self.ws_engine.shutdown()
            # A sequence past ACQUIRING must finish, or the position is stranded
            await self.gate.drain()
            if stats_task:
                stats_task.cancel()
            await self.stats.flush()
            await self.audit_log.stop()
            await self.gateway.shutdown()
            await self.ledger.shutdown()

if __name__ == "__main__":
    try:
        conf = load_config("config.yaml")
    except ConfigError as e:
        print(f"❌ Configuration error: {e}")
        sys.exit(1)
    try:
        sel_pool, sel_dry_run = startup_selection(conf)
        bot = SniperBot(conf, sel_pool, sel_dry_run)
        try:
            import uvloop
            asyncio.set_event_loop_policy(uvloop.EventLoopPolicy())
        except ImportError:
            pass
        asyncio.run(bot.run())
    except ConfigError as e:
        print(f"❌ Configuration error: {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        print("\n🛑 Sniper Stopped by User.")
        sys.exit()
