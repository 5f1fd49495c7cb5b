from dotenv import load_dotenv

load_dotenv()

from autotrader.core.config import settings
from autotrader.ops.market_hours import MarketHours
from autotrader.persistence.json_store import utc_now
from autotrader.persistence.state_store import StateStore

today = MarketHours(settings.MARKET_TIMEZONE).local_date(utc_now())

store = StateStore(settings.DATA_DIR)
daily = store.load_daily(today)

# clear the drawdown breaker and today's trade count; cooldowns and day-trade history stay
daily.trade_count = 0
daily.start_equity = None
daily.breaker = False
store.save_daily(daily)

print("RESET RESULT:", store.load_daily(today).to_dict())
