from __future__ import annotations

import logging
import threading
from typing import Any, Iterable, Protocol

import pandas as pd

from ..search.models import Location, Restaurant
from .config import DEFAULT_STORE_CONFIG, StoreConfig

logger = logging.getLogger(__name__)

RESTAURANT_COLUMNS: list[str] = ["id", "name", "cuisine", "status", "address"]

LOCATION_COLUMNS: list[str] = [
    "id",
    "restaurant_id",
    "location_name",
    "full_address",
    "city",
    "country",
    "latitude",
    "longitude",
    "phone",
]

_LEGACY_STATUS = {"must-visit": "to-visit"}
_VALID_STATUS = {"to-visit", "visited"}


class RestaurantStore(Protocol):
    """What the search subsystem needs from persistent storage."""

    @property
    def version(self) -> int: ...

    def find_by_text(self, query: str) -> list[Restaurant]: ...

    def all_with_resolved_coordinates(self) -> list[tuple[Restaurant, Location]]: ...

    def distinct_cities(self) -> set[str]: ...

    def get_restaurant(self, restaurant_id: str) -> Restaurant | None: ...

    def list_restaurants(
        self, status: str | None = None, cuisine: str | None = None
    ) -> list[Restaurant]: ...

    def locations_needing_coordinates(self, force_all: bool = False) -> list[Location]: ...

    def set_coordinates(self, location_id: str, lat: float, lng: float) -> bool: ...


def _clean(value: Any) -> Any:
    """Map pandas NaN / NA / blank strings to None."""
    if value is None or pd.isna(value):
        return None
    if isinstance(value, str) and not value.strip():
        return None
    return value


def _normalize_status(status: Any) -> str:
    raw = str(_clean(status) or "").strip().lower()
    raw = _LEGACY_STATUS.get(raw, raw)
    return raw if raw in _VALID_STATUS else "to-visit"


def _prepare_restaurants(df: pd.DataFrame) -> pd.DataFrame:
    df = df.copy()
    for col in RESTAURANT_COLUMNS:
        if col not in df.columns:
            df[col] = ""
    df = df[RESTAURANT_COLUMNS]
    df["id"] = df["id"].astype(str)
    df["status"] = df["status"].apply(_normalize_status)

    # Lowercase searchable fields for case-insensitive matching
    for col in ("name", "address", "cuisine"):
        df[col] = df[col].fillna("").astype(str)
        df[f"{col}_lower"] = df[col].str.lower()
    return df.reset_index(drop=True)


def _prepare_locations(df: pd.DataFrame) -> pd.DataFrame:
    df = df.copy()
    for col in LOCATION_COLUMNS:
        if col not in df.columns:
            df[col] = pd.NA
    df = df[LOCATION_COLUMNS]
    df["id"] = df["id"].astype(str)
    df["restaurant_id"] = df["restaurant_id"].astype(str)
    df["latitude"] = pd.to_numeric(df["latitude"], errors="coerce")
    df["longitude"] = pd.to_numeric(df["longitude"], errors="coerce")

    # A location with only one coordinate is unresolved
    partial = df["latitude"].isna() | df["longitude"].isna()
    out_of_range = ~partial & (
        ~df["latitude"].between(-90.0, 90.0) | ~df["longitude"].between(-180.0, 180.0)
    )
    if out_of_range.any():
        logger.warning(
            "Ignoring out-of-range coordinates on locations %s",
            ", ".join(df.loc[out_of_range, "id"]),
        )
    df.loc[partial | out_of_range, ["latitude", "longitude"]] = float("nan")

    for col in ("location_name", "full_address", "city"):
        df[col] = df[col].fillna("").astype(str).str.strip()
    df["location_name_lower"] = df["location_name"].str.lower()
    df["full_address_lower"] = df["full_address"].str.lower()
    return df.reset_index(drop=True)


def _location_from_row(row: pd.Series) -> Location:
    phone = _clean(row["phone"])
    return Location(
        id=row["id"],
        restaurant_id=row["restaurant_id"],
        location_name=row["location_name"],
        full_address=row["full_address"],
        city=_clean(row["city"]),
        country=_clean(row["country"]),
        latitude=_clean(row["latitude"]),
        longitude=_clean(row["longitude"]),
        phone=str(phone) if phone is not None else None,
    )


class CsvRestaurantStore:
    """
    In-memory store over a restaurants table and a locations table.

    All access is serialised by a lock so that coordinate writes from the
    backfill job never interleave with readers.
    """

    def __init__(
        self,
        restaurants: pd.DataFrame,
        locations: pd.DataFrame,
        config: StoreConfig | None = None,
    ) -> None:
        self._lock = threading.RLock()
        self._restaurants = _prepare_restaurants(restaurants)
        self._locations = _prepare_locations(locations)
        self._config = config
        self._version = 0

    @classmethod
    def from_csv(cls, config: StoreConfig = DEFAULT_STORE_CONFIG) -> CsvRestaurantStore:
        restaurants = pd.read_csv(config.restaurants_path, dtype={"id": str})
        locations = pd.read_csv(
            config.locations_path,
            dtype={"id": str, "restaurant_id": str, "phone": str},
        )
        logger.info(
            "Loaded %d restaurants and %d locations from %s",
            len(restaurants),
            len(locations),
            config.data_dir,
        )
        return cls(restaurants, locations, config=config)

    @classmethod
    def from_records(
        cls,
        restaurants: Iterable[dict[str, Any]],
        locations: Iterable[dict[str, Any]],
    ) -> CsvRestaurantStore:
        return cls(
            pd.DataFrame(list(restaurants), columns=RESTAURANT_COLUMNS),
            pd.DataFrame(list(locations), columns=LOCATION_COLUMNS),
        )

    @property
    def version(self) -> int:
        with self._lock:
            return self._version

    # ── Reads ────────────────────────────────────────────────────────────

    def _build(self, restaurants: pd.DataFrame) -> list[Restaurant]:
        ids = set(restaurants["id"])
        locs = self._locations[self._locations["restaurant_id"].isin(ids)]
        by_restaurant: dict[str, list[Location]] = {}
        for _, row in locs.iterrows():
            by_restaurant.setdefault(row["restaurant_id"], []).append(_location_from_row(row))

        out: list[Restaurant] = []
        for _, row in restaurants.sort_values("name_lower", kind="stable").iterrows():
            out.append(
                Restaurant(
                    id=row["id"],
                    name=row["name"],
                    cuisine=_clean(row["cuisine"]),
                    status=row["status"],
                    address=row["address"],
                    locations=by_restaurant.get(row["id"], []),
                )
            )
        return out

    def find_by_text(self, query: str) -> list[Restaurant]:
        needle = (query or "").strip().lower()
        if not needle:
            return []
        with self._lock:
            r = self._restaurants
            r_mask = (
                r["name_lower"].str.contains(needle, regex=False)
                | r["address_lower"].str.contains(needle, regex=False)
                | r["cuisine_lower"].str.contains(needle, regex=False)
            )
            loc = self._locations
            l_mask = loc["location_name_lower"].str.contains(needle, regex=False) | loc[
                "full_address_lower"
            ].str.contains(needle, regex=False)
            ids = set(r.loc[r_mask, "id"]) | set(loc.loc[l_mask, "restaurant_id"])
            return self._build(r[r["id"].isin(ids)])

    def all_with_resolved_coordinates(self) -> list[tuple[Restaurant, Location]]:
        with self._lock:
            resolved = self._locations.dropna(subset=["latitude", "longitude"])
            restaurants = {
                rest.id: rest
                for rest in self._build(
                    self._restaurants[self._restaurants["id"].isin(set(resolved["restaurant_id"]))]
                )
            }
            pairs: list[tuple[Restaurant, Location]] = []
            for _, row in resolved.iterrows():
                rest = restaurants.get(row["restaurant_id"])
                if rest is None:
                    # Orphaned location; nothing to show for it
                    continue
                pairs.append((rest, _location_from_row(row)))
            return pairs

    def distinct_cities(self) -> set[str]:
        with self._lock:
            return {c for c in self._locations["city"] if c}

    def get_restaurant(self, restaurant_id: str) -> Restaurant | None:
        with self._lock:
            match = self._restaurants[self._restaurants["id"] == str(restaurant_id)]
            if match.empty:
                return None
            return self._build(match)[0]

    def list_restaurants(
        self, status: str | None = None, cuisine: str | None = None
    ) -> list[Restaurant]:
        with self._lock:
            r = self._restaurants
            mask = pd.Series(True, index=r.index)
            if status and status != "all":
                mask = mask & (r["status"] == _LEGACY_STATUS.get(status, status))
            if cuisine and cuisine != "all":
                mask = mask & (r["cuisine_lower"] == cuisine.strip().lower())
            return self._build(r.loc[mask])

    def locations_needing_coordinates(self, force_all: bool = False) -> list[Location]:
        with self._lock:
            loc = self._locations
            if not force_all:
                loc = loc[loc["latitude"].isna() | loc["longitude"].isna()]
            return [_location_from_row(row) for _, row in loc.iterrows()]

    # ── Writes ───────────────────────────────────────────────────────────

    def set_coordinates(self, location_id: str, lat: float, lng: float) -> bool:
        with self._lock:
            mask = self._locations["id"] == str(location_id)
            if not mask.any():
                return False
            self._locations.loc[mask, "latitude"] = float(lat)
            self._locations.loc[mask, "longitude"] = float(lng)
            self._version += 1
            return True

    def persist(self) -> None:
        """Write both tables back to the CSVs they were loaded from."""
        if self._config is None:
            return
        with self._lock:
            self._config.data_dir.mkdir(parents=True, exist_ok=True)
            self._restaurants[RESTAURANT_COLUMNS].to_csv(self._config.restaurants_path, index=False)
            self._locations[LOCATION_COLUMNS].to_csv(self._config.locations_path, index=False)
