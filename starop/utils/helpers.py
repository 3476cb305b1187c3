import re
import jsonpickle
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

_PROPERTY_LINE = re.compile(r"^\s*([^=:#\s][^=:]*?)\s*[=:]\s*(.*?)\s*$")


def now() -> str:
    return datetime.now(timezone.utc).isoformat()


def safe_cast(val, to_type, default=None):
    try:
        return to_type(val)
    except (ValueError, TypeError):
        return default


def parse_properties(text: Optional[str]) -> Dict[str, str]:
    """Parse a StarRocks ``fe.conf``/``be.conf`` style document.

    Lines look like ``key = value``. Blank lines and ``#`` comments are
    skipped; later keys override earlier ones.
    """
    config = {}
    if not text:
        return config
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        match = _PROPERTY_LINE.match(stripped)
        if match:
            config[match.group(1)] = match.group(2)
    return config


def prune_nulls(data: Any) -> Any:
    """Drop ``None`` values and empty containers left behind by ``to_dict()``."""
    if isinstance(data, dict):
        pruned = {}
        for key, value in data.items():
            value = prune_nulls(value)
            if value is None or value == {} or value == []:
                continue
            pruned[key] = value
        return pruned
    elif isinstance(data, list):
        return [prune_nulls(item) for item in data]
    else:
        return data


def sort_dict_keys(d):
    """Recursively sort dictionary keys and handle nested structures.

    Args:
        d: Data structure (dict, list, or primitive type)

    Returns:
        Sorted version of the data structure
    """
    if isinstance(d, dict):
        return {
            key: sort_dict_keys(value)
            for key, value in sorted(d.items())
        }
    elif isinstance(d, list):
        return [sort_dict_keys(item) for item in d]
    else:
        return d


def canonicalize_dict(data):
    """
    Returns a canonical JSON representation of a dictionary.

    The JSON string uses sorted keys, which ensures that the representation
    of the dictionary remains consistent even when key order varies.
    This function works recursively for nested dictionaries and handles lists too.
    """
    return jsonpickle.dumps(sort_dict_keys(data), unpicklable=False)


def deep_compare_dict(data1, data2) -> bool:
    """Compare two data structures deeply, handling nested structures.

    Args:
        data1: First data structure (dict, list, or nested combination)
        data2: Second data structure (dict, list, or nested combination)

    Returns:
        True if data structures are equivalent, False otherwise
    """
    if data1 is None and data2 is None:
        return True
    if data1 is None or data2 is None:
        return False

    if not isinstance(data1, type(data2)) and not isinstance(data2, type(data1)):
        return False

    try:
        json1 = jsonpickle.dumps(sort_dict_keys(data1), unpicklable=False)
        json2 = jsonpickle.dumps(sort_dict_keys(data2), unpicklable=False)
        return json1 == json2
    except (TypeError, ValueError):
        return data1 == data2


_BINARY_SUFFIXES = {"Ki": 2 ** 10, "Mi": 2 ** 20, "Gi": 2 ** 30, "Ti": 2 ** 40, "Pi": 2 ** 50, "Ei": 2 ** 60}
_DECIMAL_SUFFIXES = {
    "n": Decimal("1e-9"),
    "u": Decimal("1e-6"),
    "m": Decimal("1e-3"),
    "k": Decimal(10 ** 3),
    "M": Decimal(10 ** 6),
    "G": Decimal(10 ** 9),
    "T": Decimal(10 ** 12),
    "P": Decimal(10 ** 15),
    "E": Decimal(10 ** 18),
}


def parse_quantity(quantity) -> Decimal:
    """Parse a Kubernetes quantity such as ``100Gi``, ``500M`` or ``1e3``."""
    if isinstance(quantity, (int, Decimal)):
        return Decimal(quantity)
    text = str(quantity).strip()
    number, factor = text, Decimal(1)
    if text[-2:] in _BINARY_SUFFIXES:
        number, factor = text[:-2], Decimal(_BINARY_SUFFIXES[text[-2:]])
    elif text[-1:] in _DECIMAL_SUFFIXES:
        number, factor = text[:-1], _DECIMAL_SUFFIXES[text[-1:]]
    try:
        return Decimal(number) * factor
    except InvalidOperation:
        raise ValueError(f"Invalid quantity: {quantity!r}")
