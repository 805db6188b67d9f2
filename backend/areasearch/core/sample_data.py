"""Placeholder listings returned when the search index cannot be reached.

Responses that carry these always set `using_sample_data`.
"""

from typing import Any, Dict, List

SAMPLE_PROPERTIES: List[Dict[str, Any]] = [
    {
        "id": "sample-1",
        "title": "Apartamento T2 no centro de Lisboa",
        "address": "Rua Augusta, Lisboa",
        "price": 350000,
        "bedrooms": 2,
        "bathrooms": 1,
        "area": 85,
        "county": "Lisboa",
        "category_name": "Apartamento",
        "_geoloc": [38.7103, -9.1366],
    },
    {
        "id": "sample-2",
        "title": "Moradia T4 com jardim",
        "address": "Avenida da Boavista, Porto",
        "price": 620000,
        "bedrooms": 4,
        "bathrooms": 3,
        "area": 240,
        "county": "Porto",
        "category_name": "Moradia",
        "_geoloc": [41.1579, -8.6291],
    },
    {
        "id": "sample-3",
        "title": "Terreno rústico",
        "address": "Évora",
        "price": 45000,
        "area": 12000,
        "county": "Évora",
        "category_name": "Terreno",
    },
]


def sample_properties() -> List[Dict[str, Any]]:
    return [dict(p) for p in SAMPLE_PROPERTIES]
