def namespace_for_shop(shop: str) -> str:
    """Vector-index namespace for a shop domain (dots are not allowed)."""
    return shop.replace(".", "_")


def store_name_from_shop(shop: str) -> str:
    """'cool-kicks.myshopify.com' -> 'Cool Kicks'."""
    name = shop.replace(".myshopify.com", "").replace("-", " ")
    return " ".join(word[:1].upper() + word[1:] for word in name.split(" "))
