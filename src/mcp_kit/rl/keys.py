"""Rate limiting key utilities."""


def _normalize(value: str, lower: bool = False) -> str:
    value = value.strip()
    if lower:
        value = value.lower()
    return value.replace('|', '_')


def build_rl_key(*, client_id: str, server: str, method: str) -> str:
    """
    Build a composite key for rate limiting scope (client + server + method).
    Format: rl:client:{client_id}|server:{server}|method:{method}

    Client ids keep their case; server and method are lower-cased. Any '|'
    in an input is replaced with '_' so inputs cannot forge another key.
    """
    return (
        f"rl:client:{_normalize(client_id)}"
        f"|server:{_normalize(server, lower=True)}"
        f"|method:{_normalize(method, lower=True)}"
    )
