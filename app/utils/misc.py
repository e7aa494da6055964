import datetime


def get_utc_now() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


def get_utc_iso_now() -> str:
    return get_utc_now().isoformat()


def get_utc_after(seconds: float) -> datetime.datetime:
    """Return the UTC time `seconds` from now. Negative values point to the past."""
    return get_utc_now() + datetime.timedelta(seconds=seconds)
