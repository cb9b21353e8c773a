from charity_auction.config import settings


def format_currency(amount: int) -> str:
    """Whole currency units with dot thousands separators, e.g. ``₺12.500``."""
    grouped = f"{int(amount):,}".replace(",", ".")
    return f"{settings.CURRENCY_SYMBOL}{grouped}"


def mask_name(name: str) -> str:
    """Hide all but the first and last letter of each name part: ``Ayşe Yılmaz`` -> ``A**e Y****z``."""
    masked = []
    for part in name.strip().split():
        if len(part) <= 2:
            masked.append(part[0] + "*")
        else:
            masked.append(part[0] + "*" * (len(part) - 2) + part[-1])
    return " ".join(masked)
