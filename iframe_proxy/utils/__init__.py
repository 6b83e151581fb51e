def mask_cookie_values(header: str) -> str:
    """Keep cookie names readable in logs while hiding their values."""
    masked = []
    for pair in header.split(";"):
        name, sep, value = pair.strip().partition("=")
        if sep and name and value:
            masked.append(f"{name}={value[:2]}****")
        elif pair.strip():
            masked.append(pair.strip())
    return "; ".join(masked)
