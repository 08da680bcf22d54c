"""
Map raw catalog payloads onto store records and price samples.

The catalog returns nested card documents; the store keeps a root ``card`` row,
a connected-or-created ``card_set`` row, and owned child collections that are
replaced wholesale on every sync.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Tuple

from catalog_sync.domain.models import EntityRecord, PriceSample

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

# First non-null wins.
TCGPLAYER_PRICE_VARIANTS = ("normal", "holofoil", "reverseHolofoil")

CARDMARKET_PRICE_FIELDS = {
    "averageSellPrice": "average_sell_price",
    "lowPrice": "low_price",
    "trendPrice": "trend_price",
    "germanProLow": "german_pro_low",
    "suggestedPrice": "suggested_price",
    "reverseHoloSell": "reverse_holo_sell",
    "reverseHoloLow": "reverse_holo_low",
    "reverseHoloTrend": "reverse_holo_trend",
    "lowPriceExPlus": "low_price_ex_plus",
    "avg1": "avg1",
    "avg7": "avg7",
    "avg30": "avg30",
    "reverseHoloAvg1": "reverse_holo_avg1",
    "reverseHoloAvg7": "reverse_holo_avg7",
    "reverseHoloAvg30": "reverse_holo_avg30",
}


def _parse_timestamp(raw: Any, default: Optional[datetime] = None) -> Optional[datetime]:
    if not raw:
        return default
    for fmt in ("%Y/%m/%d %H:%M:%S", "%Y/%m/%d", "%Y-%m-%dT%H:%M:%S%z", "%Y-%m-%d"):
        try:
            parsed = datetime.strptime(str(raw), fmt)
        except ValueError:
            continue
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return default


def _parse_date(raw: Any) -> Optional[date]:
    parsed = _parse_timestamp(raw)
    return parsed.date() if parsed else None


def _list(value: Any) -> List[Any]:
    return list(value) if value else []


def _float(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _set_row(card_set: Mapping[str, Any]) -> Dict[str, Any]:
    legalities = card_set.get("legalities") or {}
    images = card_set.get("images") or {}
    return {
        "id": card_set["id"],
        "name": card_set.get("name"),
        "series": card_set.get("series"),
        "printed_total": card_set.get("printedTotal"),
        "total": card_set.get("total"),
        "ptcgo_code": card_set.get("ptcgoCode"),
        "release_date": _parse_date(card_set.get("releaseDate")),
        "updated_at": _parse_timestamp(card_set.get("updatedAt"), default=EPOCH),
        "symbol_url": images.get("symbol"),
        "logo_url": images.get("logo"),
        "legal_unlimited": legalities.get("unlimited"),
        "legal_standard": legalities.get("standard"),
        "legal_expanded": legalities.get("expanded"),
    }


def _tcgplayer_rows(tcgplayer: Mapping[str, Any]) -> List[Dict[str, Any]]:
    updated_at = _parse_timestamp(tcgplayer.get("updatedAt"), default=EPOCH)
    rows = []
    for variant, prices in sorted((tcgplayer.get("prices") or {}).items()):
        prices = prices or {}
        rows.append(
            {
                "url": tcgplayer.get("url"),
                "updated_at": updated_at,
                "variant": variant,
                "low": _float(prices.get("low")),
                "mid": _float(prices.get("mid")),
                "high": _float(prices.get("high")),
                "market": _float(prices.get("market")),
                "direct_low": _float(prices.get("directLow")),
            }
        )
    return rows


def _cardmarket_rows(cardmarket: Mapping[str, Any]) -> List[Dict[str, Any]]:
    prices = cardmarket.get("prices") or {}
    row: Dict[str, Any] = {
        "url": cardmarket.get("url"),
        "updated_at": _parse_timestamp(cardmarket.get("updatedAt"), default=EPOCH),
    }
    for api_name, column in CARDMARKET_PRICE_FIELDS.items():
        row[column] = _float(prices.get(api_name))
    return [row]


def build_entity_record(card: Mapping[str, Any]) -> EntityRecord:
    """
    Normalize one catalog card into an ``EntityRecord``.

    Raises
    ------
    KeyError
        If the card has no ``id``.
    """
    card_id = card["id"]
    card_set = card.get("set")
    root = {
        "id": card_id,
        "name": card.get("name"),
        "supertype": card.get("supertype"),
        "subtypes": _list(card.get("subtypes")),
        "level": card.get("level"),
        "hp": card.get("hp"),
        "types": _list(card.get("types")),
        "evolves_from": card.get("evolvesFrom"),
        "evolves_to": _list(card.get("evolvesTo")),
        "rules": _list(card.get("rules")),
        "flavor_text": card.get("flavorText"),
        "artist": card.get("artist"),
        "rarity": card.get("rarity"),
        "number": card.get("number"),
        "national_pokedex_numbers": _list(card.get("nationalPokedexNumbers")),
        "converted_retreat_cost": card.get("convertedRetreatCost"),
        "retreat_cost": _list(card.get("retreatCost")),
        "set_id": card_set["id"] if card_set else None,
    }

    children: Dict[str, List[Dict[str, Any]]] = {
        "card_attack": [
            {
                "name": attack.get("name"),
                "cost": _list(attack.get("cost")),
                "converted_energy_cost": attack.get("convertedEnergyCost"),
                "damage": attack.get("damage"),
                "text": attack.get("text"),
            }
            for attack in card.get("attacks") or []
        ],
        "card_ability": [
            {"name": ability.get("name"), "text": ability.get("text"), "type": ability.get("type")}
            for ability in card.get("abilities") or []
        ],
        "card_weakness": [
            {"type": weakness.get("type"), "value": weakness.get("value")}
            for weakness in card.get("weaknesses") or []
        ],
        "card_resistance": [
            {"type": resistance.get("type"), "value": resistance.get("value")}
            for resistance in card.get("resistances") or []
        ],
        "card_legality": [],
        "card_image": [],
        "card_tcgplayer_price": [],
        "card_cardmarket_price": [],
    }
    if card.get("legalities"):
        legalities = card["legalities"]
        children["card_legality"].append(
            {
                "unlimited": legalities.get("unlimited"),
                "standard": legalities.get("standard"),
                "expanded": legalities.get("expanded"),
            }
        )
    if card.get("images"):
        children["card_image"].append(
            {"small": card["images"].get("small"), "large": card["images"].get("large")}
        )
    if card.get("tcgplayer"):
        children["card_tcgplayer_price"] = _tcgplayer_rows(card["tcgplayer"])
    if card.get("cardmarket"):
        children["card_cardmarket_price"] = _cardmarket_rows(card["cardmarket"])

    return EntityRecord(
        entity_id=card_id,
        root=root,
        parent=_set_row(card_set) if card_set else None,
        children=children,
    )


def derive_price(card: Mapping[str, Any]) -> Tuple[Optional[float], Optional[str]]:
    """
    Pick the price recorded in the time-series.

    Cardmarket ``averageSellPrice`` first, then the tcgplayer market price of
    the normal, holofoil, and reverse holofoil variants in that order.
    """
    cardmarket_prices = (card.get("cardmarket") or {}).get("prices") or {}
    average_sell = _float(cardmarket_prices.get("averageSellPrice"))
    if average_sell is not None:
        return average_sell, "cardmarket"

    tcgplayer_prices = (card.get("tcgplayer") or {}).get("prices") or {}
    for variant in TCGPLAYER_PRICE_VARIANTS:
        market = _float((tcgplayer_prices.get(variant) or {}).get("market"))
        if market is not None:
            return market, "tcgplayer"
    return None, None


def build_price_sample(card: Mapping[str, Any], observed_at: datetime) -> PriceSample:
    value, source = derive_price(card)
    return PriceSample(entity_id=card["id"], observed_at=observed_at, value=value, source=source)


__all__ = ["build_entity_record", "build_price_sample", "derive_price"]
