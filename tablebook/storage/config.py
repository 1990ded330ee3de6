from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

_DEFAULT_DATA_DIR = Path(__file__).resolve().parent.parent / "data"


@dataclass(frozen=True)
class StoreConfig:
    """
    Locations of the CSV tables backing :class:`CsvRestaurantStore`.
    """

    data_dir: Path = Path(os.getenv("TABLEBOOK_DATA_DIR", str(_DEFAULT_DATA_DIR)))
    restaurants_filename: str = "restaurants.csv"
    locations_filename: str = "locations.csv"

    @property
    def restaurants_path(self) -> Path:
        return self.data_dir / self.restaurants_filename

    @property
    def locations_path(self) -> Path:
        return self.data_dir / self.locations_filename


DEFAULT_STORE_CONFIG = StoreConfig()
