from .asset_symbol_mapping import AssetSymbolMapping
from .asset import Asset
