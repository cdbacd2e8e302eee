from services.coincap.client import CoinCapClient, normalize_asset_id
from services.coincap.errors import (
    AuthError,
    ClientError,
    ConfigError,
    DecodeError,
    FetchTimeout,
    MarketDataError,
    PriceUnavailable,
    ServerError,
    TransportError,
    UnknownSymbol,
)
