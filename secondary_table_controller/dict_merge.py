def dict_merge(base_dct: dict, merge_dct: dict) -> dict:
    """Deep merge of two config mappings, ``merge_dct`` wins

    Nested mappings are merged key by key, everything else is replaced.
    An empty section (``pool:`` with no keys, read as ``None``) keeps the base section.
    Neither argument is modified.
    """
    rtn_dct = dict(base_dct)

    for key, value in merge_dct.items():
        current = rtn_dct.get(key)

        if isinstance(current, dict) and isinstance(value, dict):
            rtn_dct[key] = dict_merge(current, value)
        elif isinstance(current, dict) and value is None:
            continue
        else:
            rtn_dct[key] = value

    return rtn_dct
