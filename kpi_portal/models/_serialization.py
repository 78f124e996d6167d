"""Helpers shared by the aggregate's ``to_dict`` / ``from_dict`` methods."""


def compact(data: dict) -> dict:
    """Drop keys whose value is None (optional fields absent in the document)."""
    return {k: v for k, v in data.items() if v is not None}


def as_float(value, default=0.0):
    if value is None or value == "":
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValueError(f"Expected a number, got {value!r}") from None
    return int(number) if number.is_integer() else number


def as_tuple(value) -> tuple:
    if value is None:
        return ()
    if isinstance(value, (list, tuple)):
        return tuple(value)
    raise TypeError(f"Expected a list, got {type(value).__name__}")


def as_records(value, from_dict) -> tuple:
    """Decode a list of JSON objects with *from_dict*; anything else is a TypeError."""
    records = []
    for item in as_tuple(value):
        if not isinstance(item, dict):
            raise TypeError(f"Expected an object, got {type(item).__name__}")
        records.append(from_dict(item))
    return tuple(records)
