"""
Shell wallet selection under the capacity policy.

A wallet accepts new allocations while it is active and its balance is
below ``maxWalletBalance``. Selection and the later balance increment are
separate store calls, so two concurrent routings can both pick the same
wallet and push it past the cap. The overshoot is bounded by one
allocation per concurrent caller, and the next selection after it rolls to
a fresh wallet.
"""

from ..config.routing import RoutingConfig
from ..database.stores import WalletStore
from ..models import ShellWallet, cycle_number_at, utcnow
from ..utils.addresses import generate_wallet_address, generate_wallet_id
from ..utils.production_logger import LoggerFactory


class WalletAllocator:

    def __init__(self, store: WalletStore, routing_config: RoutingConfig):
        self.store = store
        self.routing_config = routing_config
        self.logger = LoggerFactory.get_routing_logger()

    def get_available_wallet(self) -> ShellWallet:
        """First eligible wallet, or a newly persisted one when none is eligible."""
        max_balance = self.routing_config.current.max_wallet_balance

        for wallet in self.store.list_wallets(active_only=True, balance_below=max_balance):
            # never hand out an inactive or full wallet
            if wallet.accepts_allocation(max_balance):
                return wallet

        wallet = self.store.create_wallet(self.create_shell_wallet())
        self.logger.info("Shell wallet created", shell_wallet_id=wallet.id, cycle_number=wallet.cycle_number)
        return wallet

    def create_shell_wallet(self) -> ShellWallet:
        """Build an empty active wallet. Nothing is persisted."""
        moment = utcnow()
        return ShellWallet(
            id=generate_wallet_id(),
            address=generate_wallet_address(),
            balance=0,
            created_at=moment,
            last_used_at=moment,
            is_active=True,
            cycle_number=cycle_number_at(moment, self.routing_config.current.cycle_interval_hours),
        )
