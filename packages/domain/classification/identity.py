"""
Product identity hash

Public contract: upstream submitters compute the same value independently to
avoid resubmitting products, so the algorithm must stay bit-for-bit stable.

    normalized = lower(trim(name))
    h = ((h << 5) - h + codepoint) mod 2^32, wrapped into [-2^31, 2^31)
    identity = "name_" + abs(h)
"""

IDENTITY_PREFIX = "name_"


def normalize_product_name(name: str) -> str:
    return name.strip().lower()


def product_identity_hash(name: str) -> str:
    """
    Derive the identity hash for a product name.

    Returns "" for empty input, which callers treat as "no identity".
    Collisions in the 32-bit space are accepted: colliding names are the
    same product.
    """
    if name == "":
        return ""

    h = 0
    for char in normalize_product_name(name):
        h = ((h << 5) - h + ord(char)) & 0xFFFFFFFF
        if h & 0x80000000:
            h -= 0x100000000

    return f"{IDENTITY_PREFIX}{abs(h)}"
