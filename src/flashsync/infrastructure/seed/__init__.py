from .csv_import import ConversionReport, convert_csv
from .json_loader import JsonSeedLoader

__all__ = ["ConversionReport", "JsonSeedLoader", "convert_csv"]
