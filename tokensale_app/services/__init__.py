from tokensale_app.services.dividend import DividendEngine
from tokensale_app.services.payout import PayoutService
from tokensale_app.services.precision import normalize, percent_of
from tokensale_app.services.pricing import alpha_gain, spot_price
from tokensale_app.services.settlement import SettlementEngine
from tokensale_app.services.vesting import VestingEngine

__all__ = [
    "DividendEngine",
    "PayoutService",
    "SettlementEngine",
    "VestingEngine",
    "alpha_gain",
    "normalize",
    "percent_of",
    "spot_price",
]
