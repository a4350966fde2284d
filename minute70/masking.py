def mask_email(email: str) -> str:
    """Mask an email for logs: ``al*****@gmail.com``."""
    local, _, domain = (email or "").partition("@")
    if not domain:
        return "*****"
    keep = 1 if len(local) < 2 else 2
    return local[:keep] + "*****@" + domain
