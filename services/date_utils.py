from datetime import date, datetime, time, timedelta, timezone


def utcnow() -> datetime:
    """Agora em UTC, sem tzinfo (padrao das colunas DateTime)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def last_day_of_month(d: date) -> date:
    if d.month == 12:
        first_next = date(d.year + 1, 1, 1)
    else:
        first_next = date(d.year, d.month + 1, 1)
    return first_next - timedelta(days=1)


def add_months(value: datetime, months: int = 1) -> datetime:
    """Soma meses mantendo o dia; se o mes destino for mais curto, usa o ultimo dia.

    31/01 + 1 mes -> 28/02 (ou 29/02 em ano bissexto).
    """
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    last_day = last_day_of_month(date(year, month, 1)).day
    return value.replace(year=year, month=month, day=min(value.day, last_day))


def next_billing_date(days: int = 30, *, now: datetime | None = None) -> datetime:
    base = (now or utcnow()) + timedelta(days=days)
    return datetime.combine(base.date(), time.min)


def parse_gateway_datetime(value) -> datetime | None:
    """Converte datas ISO-8601 do gateway (com offset) para UTC sem tzinfo."""
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        raw = str(value).strip()
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(raw)
        except ValueError:
            return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def to_gateway_datetime(value: datetime) -> str:
    """Formato aceito pelo gateway: 2024-01-31T00:00:00.000+00:00"""
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}+00:00"
