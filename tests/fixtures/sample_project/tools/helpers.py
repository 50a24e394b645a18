def fmt(value: str) -> str:
    return f"[{value}]"
